from vulnmatch.models.component import Component
from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.identifier import Cpe
from vulnmatch.models.identifier import Identifier
from vulnmatch.services.false_positive_service import FalsePositiveAnalyzer
from vulnmatch.services.false_positive_service import add_false_negative_cpes
from vulnmatch.services.false_positive_service import has_direct_evidence
from vulnmatch.services.false_positive_service import remove_bad_matches
from vulnmatch.services.false_positive_service import remove_bad_spring_matches
from vulnmatch.services.false_positive_service import remove_jre_entries
from vulnmatch.services.false_positive_service import remove_spurious_cpe
from vulnmatch.services.false_positive_service import remove_wrong_version_matches


def with_cpes(file_path, *cpes):
    component = Component(file_path, ecosystem='java')
    for value in cpes:
        component.add_vulnerable_software_identifier(
            Identifier.for_cpe(Cpe.parse(value), Confidence.HIGH),
        )
    return component


def cpe_values(component):
    return sorted(i.value for i in component.cpe_identifiers())


class TestHasDirectEvidence:
    """Tests for has_direct_evidence."""

    def test_word_with_digit_suffix(self):
        assert has_direct_evidence(['struts2-core'], 'struts')

    def test_punctuation_is_ignored(self):
        assert has_direct_evidence(['M_Core'], 'm-core')

    def test_substring_is_not_enough(self):
        assert not has_direct_evidence(['encore'], 'core')

    def test_empty_name(self):
        assert not has_direct_evidence(['anything'], '--')


class TestRemoveBadMatches:
    """Tests for remove_bad_matches."""

    def test_short_product_without_evidence_is_removed(self):
        """Test m-core is dropped when nothing names it directly."""
        component = with_cpes('lib/foo-1.0.jar', 'cpe:/a:m-core:m-core:1.0')
        remove_bad_matches(component)
        assert cpe_values(component) == []

    def test_short_product_with_product_evidence_is_kept(self):
        component = with_cpes('lib/foo-1.0.jar', 'cpe:/a:m-core:m-core:1.0')
        component.add_evidence(EvidenceType.PRODUCT, 'pom', 'artifactId', 'm-core', Confidence.HIGH)
        remove_bad_matches(component)
        assert cpe_values(component) == ['cpe:/a:m-core:m-core:1.0']

    def test_vendor_evidence_counts_when_vendor_is_product(self):
        component = with_cpes('lib/foo-1.0.jar', 'cpe:/a:m-core:m-core:1.0')
        component.add_evidence(EvidenceType.VENDOR, 'pom', 'groupId', 'm-core', Confidence.HIGH)
        remove_bad_matches(component)
        assert cpe_values(component) == ['cpe:/a:m-core:m-core:1.0']

    def test_generic_pair_on_binary(self):
        component = with_cpes('lib/file-utils-1.2.1.jar', 'cpe:/a:file:file:1.2.1')
        component.add_evidence(EvidenceType.PRODUCT, 'file', 'name', 'file', Confidence.HIGH)
        remove_bad_matches(component)
        assert cpe_values(component) == []

    def test_javascript_library_on_jar(self):
        component = with_cpes('lib/webjar-jquery.jar', 'cpe:/a:jquery:jquery:1.8.0')
        component.add_evidence(EvidenceType.PRODUCT, 'pom', 'artifactId', 'jquery', Confidence.HIGH)
        remove_bad_matches(component)
        assert cpe_values(component) == []

    def test_javascript_library_on_script(self):
        component = with_cpes('static/jquery-1.8.0.js', 'cpe:/a:jquery:jquery:1.8.0')
        component.add_evidence(EvidenceType.PRODUCT, 'file', 'name', 'jquery', Confidence.HIGH)
        remove_bad_matches(component)
        assert cpe_values(component) == ['cpe:/a:jquery:jquery:1.8.0']

    def test_maven_only_on_maven_core(self):
        plugin = with_cpes('lib/maven-plugin-api-3.0.jar', 'cpe:/a:apache:maven:3.0')
        plugin.add_evidence(EvidenceType.PRODUCT, 'pom', 'artifactId', 'maven-plugin-api', Confidence.HIGH)
        core = with_cpes('lib/maven-core-3.0.jar', 'cpe:/a:apache:maven:3.0')
        core.add_evidence(EvidenceType.PRODUCT, 'pom', 'artifactId', 'maven-core', Confidence.HIGH)

        remove_bad_matches(plugin)
        remove_bad_matches(core)

        assert cpe_values(plugin) == []
        assert cpe_values(core) == ['cpe:/a:apache:maven:3.0']

    def test_long_product_is_left_alone(self):
        component = with_cpes('lib/struts2-core-2.5.10.jar', 'cpe:/a:apache:struts2_core:2.5.10')
        remove_bad_matches(component)
        assert cpe_values(component) == ['cpe:/a:apache:struts2_core:2.5.10']


class TestOtherRules:
    """Tests for the remaining false-positive rules."""

    def test_jre_only_on_runtime_jars(self):
        library = with_cpes('lib/foo.jar', 'cpe:/a:oracle:jre:1.8.0')
        runtime = with_cpes('jre/lib/rt.jar', 'cpe:/a:oracle:jre:1.8.0')
        remove_jre_entries(library)
        remove_jre_entries(runtime)
        assert cpe_values(library) == []
        assert cpe_values(runtime) == ['cpe:/a:oracle:jre:1.8.0']

    def test_spring_module_mismatch(self):
        component = with_cpes(
            'lib/spring-security-core-5.0.0.jar',
            'cpe:/a:springsource:spring_framework:5.0.0',
            'cpe:/a:springsource:spring_security:5.0.0',
        )
        component.add_software_identifier(Identifier.for_purl(
            'pkg:maven/org.springframework.security/spring-security-core@5.0.0', Confidence.HIGHEST,
        ))
        remove_bad_spring_matches(component)
        assert cpe_values(component) == ['cpe:/a:springsource:spring_security:5.0.0']

    def test_axis_version_mismatch(self):
        component = with_cpes(
            'lib/axis2-kernel-1.4.jar', 'cpe:/a:apache:axis:1.4', 'cpe:/a:apache:axis2:1.4',
        )
        remove_wrong_version_matches(component)
        assert cpe_values(component) == ['cpe:/a:apache:axis2:1.4']

    def test_spurious_prefix_version(self):
        """Test the less specific of two versions of one product is dropped."""
        component = with_cpes(
            'lib/struts.jar',
            'cpe:/a:apache:struts:2.5',
            'cpe:/a:apache:struts:2.5.10',
            'cpe:/a:apache:tomcat:2.5',
        )
        remove_spurious_cpe(component)
        assert cpe_values(component) == [
            'cpe:/a:apache:struts:2.5.10',
            'cpe:/a:apache:tomcat:2.5',
        ]

    def test_spurious_versionless(self):
        component = with_cpes('lib/struts.jar', 'cpe:/a:apache:struts', 'cpe:/a:apache:struts:2.5.10')
        remove_spurious_cpe(component)
        assert cpe_values(component) == ['cpe:/a:apache:struts:2.5.10']

    def test_unrelated_versions_are_kept(self):
        component = with_cpes('lib/struts.jar', 'cpe:/a:apache:struts:2.3', 'cpe:/a:apache:struts:2.5')
        remove_spurious_cpe(component)
        assert len(cpe_values(component)) == 2

    def test_opensso_false_negatives(self):
        component = with_cpes('lib/opensso.jar', 'cpe:/a:sun:opensso:8.0')
        add_false_negative_cpes(component)
        assert cpe_values(component) == [
            'cpe:/a:oracle:opensso:8.0',
            'cpe:/a:oracle:opensso_enterprise:8.0',
            'cpe:/a:sun:opensso:8.0',
            'cpe:/a:sun:opensso_enterprise:8.0',
        ]

    def test_santuario_false_negative(self):
        component = with_cpes('lib/xmlsec.jar', 'cpe:/a:apache:santuario_xml_security_for_java:2.1.4')
        add_false_negative_cpes(component)
        assert 'cpe:/a:apache:xml_security_for_java:2.1.4' in cpe_values(component)


def test_analyzer_applies_all_rules():
    component = with_cpes(
        'lib/file-utils-1.2.1.jar',
        'cpe:/a:file:file:1.2.1',
        'cpe:/a:oracle:jre:1.8.0',
        'cpe:/a:apache:commons_fileupload:1.2.1',
    )
    FalsePositiveAnalyzer().process(component)
    assert cpe_values(component) == ['cpe:/a:apache:commons_fileupload:1.2.1']
