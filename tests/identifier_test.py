from unittest.mock import MagicMock

import pytest

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.models.component import Component
from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.evidence import Evidence
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.vulnerability import VulnerabilityRecord
from vulnmatch.services.dataset_service import JsonlVulnerabilityDataset
from vulnmatch.services.identifier_service import CpeIdentifierAnalyzer
from vulnmatch.services.identifier_service import collection_contains_string
from vulnmatch.services.index_service import IndexEntry

RECORDS = [
    {
        'name': 'CVE-2017-5638',
        'cvssScore': 10.0,
        'vulnerableSoftware': [
            {'cpe': 'cpe:/a:apache:struts:2.5.10', 'ecosystem': 'java'},
            {'cpe': 'cpe:/a:apache:struts:2.3.31', 'ecosystem': 'java'},
        ],
    },
    {
        'name': 'CVE-2020-0001',
        'vulnerableSoftware': [
            {
                'cpe': 'cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*',
                'ecosystem': 'java',
                'versionStartIncluding': '2.0.0',
                'versionEndExcluding': '2.5.12',
            },
        ],
    },
    {
        'name': 'CVE-2019-10744',
        'vulnerableSoftware': [
            {'cpe': 'cpe:/a:lodash:lodash', 'ecosystem': 'npm', 'versionEndExcluding': '4.17.12'},
        ],
    },
]


@pytest.fixture
def dataset():
    return JsonlVulnerabilityDataset(VulnerabilityRecord.model_validate(r) for r in RECORDS)


@pytest.fixture
def analyzer(dataset):
    analyzer = CpeIdentifierAnalyzer(dataset, config=VulnMatchConfig())
    analyzer.initialize(None)
    yield analyzer
    analyzer.close()


def struts_component(version='2.5.10'):
    component = Component('lib/struts2-core.jar', ecosystem='java')
    component.add_evidence(EvidenceType.VENDOR, 'manifest', 'Implementation-Vendor', 'apache', Confidence.HIGH)
    component.add_evidence(EvidenceType.PRODUCT, 'manifest', 'Implementation-Title', 'struts', Confidence.HIGH)
    if version:
        component.add_evidence(EvidenceType.VERSION, 'manifest', 'Implementation-Version', version, Confidence.HIGH)
    return component


def ev(value):
    return Evidence('file', 'name', value, Confidence.HIGH)


class TestCollectionContainsString:
    """Tests for collection_contains_string."""

    def test_exact_value(self):
        assert collection_contains_string([ev('m-core')], 'm-core')

    def test_short_words_are_joined(self):
        """Test 'm-core' is looked up as 'mcore'."""
        assert collection_contains_string([ev('mcore library')], 'm-core')

    def test_stop_words_are_ignored(self):
        assert collection_contains_string([ev('apache')], 'apache software foundation')

    def test_missing_word(self):
        assert not collection_contains_string([ev('jboss')], 'apache')

    def test_http_inside_url_does_not_count(self):
        assert not collection_contains_string([ev('http://example.com')], 'http')

    def test_empty_text(self):
        assert not collection_contains_string([ev('apache')], None)
        assert not collection_contains_string([ev('apache')], '')


class TestCpeIdentifierAnalyzer:
    """Tests for CPE identification."""

    def test_exact_version_match(self, analyzer):
        component = struts_component('2.5.10')

        assert analyzer.determine_cpe(component) is True

        identifiers = component.cpe_identifiers()
        assert [i.value for i in identifiers] == ['cpe:/a:apache:struts:2.5.10']
        assert identifiers[0].confidence == Confidence.HIGH
        assert identifiers[0].url.startswith('https://nvd.nist.gov/')

    def test_unknown_version_is_a_low_confidence_guess(self, analyzer):
        """Test a version absent from the dataset still yields a guessed CPE."""
        component = struts_component('9.9.9')

        assert analyzer.determine_cpe(component) is True

        identifiers = component.cpe_identifiers()
        assert [i.value for i in identifiers] == ['cpe:/a:apache:struts:9.9.9']
        assert identifiers[0].confidence == Confidence.LOW

    def test_range_entry_yields_concrete_version(self, analyzer):
        component = struts_component('2.4.1')
        analyzer.determine_cpe(component)
        assert [i.value for i in component.cpe_identifiers()] == ['cpe:/a:apache:struts:2.4.1']
        assert component.cpe_identifiers()[0].confidence == Confidence.HIGH

    def test_no_vendor_evidence(self, analyzer):
        component = Component('lib/struts.jar', ecosystem='java')
        component.add_evidence(EvidenceType.PRODUCT, 'file', 'name', 'struts', Confidence.HIGH)
        assert analyzer.determine_cpe(component) is False
        assert component.cpe_identifiers() == []

    def test_identifier_confidence_capped_by_evidence(self, analyzer):
        """Test identifiers never exceed the confidence of the selecting evidence."""
        component = Component('lib/struts2-core.jar', ecosystem='java')
        component.add_evidence(EvidenceType.VENDOR, 'file', 'name', 'apache', Confidence.MEDIUM)
        component.add_evidence(EvidenceType.PRODUCT, 'file', 'name', 'struts', Confidence.MEDIUM)
        component.add_evidence(EvidenceType.VERSION, 'manifest', 'version', '2.5.10', Confidence.HIGHEST)

        analyzer.determine_cpe(component)

        assert component.cpe_identifiers()[0].confidence == Confidence.MEDIUM

    def test_other_ecosystem_is_not_matched(self, analyzer):
        component = struts_component()
        component.ecosystem = 'npm'
        assert analyzer.determine_cpe(component) is False

    def test_verify_entry_requires_vendor_evidence(self, analyzer):
        component = Component('lib/struts.jar', ecosystem='java')
        component.add_evidence(EvidenceType.VENDOR, 'file', 'name', 'jboss', Confidence.HIGH)
        component.add_evidence(EvidenceType.PRODUCT, 'file', 'name', 'struts', Confidence.HIGH)
        assert not analyzer.verify_entry(IndexEntry('apache', 'struts'), component, set())

    def test_verify_entry_npm_uses_package_name(self, analyzer):
        component = Component('package-lock.json?lodash', ecosystem='npm', virtual=True)
        component.add_software_identifier(Identifier.for_purl('pkg:npm/lodash@4.17.11', Confidence.HIGHEST))
        assert analyzer.verify_entry(IndexEntry('lodash', 'lodash'), component, set())
        assert not analyzer.verify_entry(IndexEntry('lodash', 'lodash.merge'), component, set())

    def test_npm_component_identified(self, analyzer):
        component = Component('package-lock.json?lodash', ecosystem='npm', virtual=True)
        component.add_software_identifier(Identifier.for_purl('pkg:npm/lodash@4.17.11', Confidence.HIGHEST))
        component.add_evidence(EvidenceType.VENDOR, 'package.json', 'name', 'lodash', Confidence.HIGHEST)
        component.add_evidence(EvidenceType.PRODUCT, 'package.json', 'name', 'lodash', Confidence.HIGHEST)
        component.add_evidence(EvidenceType.VERSION, 'package.json', 'version', '4.17.11', Confidence.HIGHEST)

        assert analyzer.determine_cpe(component) is True
        assert [i.value for i in component.cpe_identifiers()] == ['cpe:/a:lodash:lodash:4.17.11']

    def test_suppression_is_applied_on_attach(self, dataset):
        suppression = MagicMock()

        def drop_all(component):
            for identifier in component.cpe_identifiers():
                component.remove_vulnerable_software_identifier(identifier)

        suppression.apply_identifiers.side_effect = drop_all
        analyzer = CpeIdentifierAnalyzer(dataset, suppression=suppression, config=VulnMatchConfig())
        analyzer.initialize(None)

        component = struts_component()
        assert analyzer.determine_cpe(component) is False
        assert component.cpe_identifiers() == []
        suppression.apply_identifiers.assert_called_with(component)

    def test_process_counts_identified(self, analyzer):
        engine = MagicMock()
        component = struts_component()
        analyzer.process(component, engine)
        engine.stats.inc_identified.assert_called_once_with(1)

    def test_process_skips_configured_ecosystems(self, dataset):
        config = VulnMatchConfig()
        config.analysis.skip_ecosystems = ['java']
        analyzer = CpeIdentifierAnalyzer(dataset, config=config)
        analyzer.initialize(None)
        component = struts_component()
        analyzer.process(component, MagicMock())
        assert component.cpe_identifiers() == []
