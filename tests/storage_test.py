import json

from structlog.testing import capture_logs

from vulnmatch.core.storage import ComponentRecord
from vulnmatch.core.storage import load_components
from vulnmatch.core.storage import save_results
from vulnmatch.models.component import Component
from vulnmatch.models.confidence import Confidence
from vulnmatch.models.confidence import EvidenceType
from vulnmatch.models.confidence import IdentifierScheme
from vulnmatch.models.identifier import Cpe
from vulnmatch.models.identifier import Identifier
from vulnmatch.models.vulnerability import Vulnerability

STRUTS = {
    'filePath': 'lib\\struts2-core-2.5.10.jar',
    'sha1': 'ABC123',
    'ecosystem': 'java',
    'evidence': [
        {'type': 'VENDOR', 'source': 'manifest', 'name': 'Implementation-Vendor', 'value': 'apache', 'confidence': 'HIGH'},
        {'type': 'PRODUCT', 'source': 'manifest', 'name': 'Implementation-Title', 'value': 'struts', 'confidence': 'HIGH'},
        {'type': 'PRODUCT', 'source': 'Manifest', 'name': 'implementation-title', 'value': 'Struts', 'confidence': 'HIGHEST'},
    ],
    'vendorWeightings': ['Apache'],
    'identifiers': [
        {'scheme': 'PURL', 'value': 'pkg:maven/org.apache.struts/struts2-core@2.5.10'},
        {'scheme': 'CPE', 'value': 'cpe:/a:apache:struts:2.5.10', 'confidence': 'LOW'},
    ],
    'projectReferences': ['app/pom.xml'],
}


class TestComponentRecord:
    """Tests for reading collected components."""

    def test_to_component(self):
        component = ComponentRecord.model_validate(STRUTS).to_component()

        assert component.file_path == 'lib/struts2-core-2.5.10.jar'
        assert component.file_name == 'struts2-core-2.5.10.jar'
        assert component.sha1 == 'abc123'
        assert component.evidence.values_of(EvidenceType.VENDOR) == ['apache']
        assert component.evidence.vendor_weightings == {'apache'}
        assert [i.value for i in component.purl_identifiers()] == [
            'pkg:maven/org.apache.struts/struts2-core@2.5.10',
        ]
        assert [i.value for i in component.cpe_identifiers()] == ['cpe:/a:apache:struts:2.5.10']
        assert component.project_references == {'app/pom.xml'}

    def test_duplicate_evidence_keeps_highest_confidence(self):
        """Test evidence differing only in case is stored once."""
        component = ComponentRecord.model_validate(STRUTS).to_component()
        products = component.evidence.get(EvidenceType.PRODUCT)
        assert len(products) == 1
        assert products[0].confidence == Confidence.HIGHEST


class TestJsonl:
    """Tests for JSONL input and output."""

    def test_load_components_skips_invalid_lines(self, tmp_path):
        path = tmp_path / 'components.jsonl'
        path.write_text('\n'.join([
            json.dumps(STRUTS),
            '',
            '{"sha1": "no path"}',
            'not json',
            json.dumps({'filePath': 'lib/other.jar'}),
        ]), encoding='utf-8')

        components = load_components(path)

        assert [c.file_path for c in components] == ['lib/struts2-core-2.5.10.jar', 'lib/other.jar']

    def test_load_missing_file(self, tmp_path):
        assert load_components(tmp_path / 'missing.jsonl') == []

    def test_save_results(self, tmp_path):
        component = Component('lib/struts2-core-2.5.10.jar', sha1='abc')
        component.add_vulnerable_software_identifier(
            Identifier.for_cpe(Cpe.parse('cpe:/a:apache:struts:2.5.10'), Confidence.HIGH),
        )
        suppressed = Identifier.for_cpe(Cpe.parse('cpe:/a:file:file:2.5.10'), Confidence.LOW)
        component.add_suppressed_identifier(suppressed)
        component.add_vulnerability(Vulnerability(name='CVE-2017-5638', cvss_score=10.0))
        component.add_related_dependency(Component('lib/struts2-core-2.5.10-sources.jar'))
        path = tmp_path / 'out' / 'results.jsonl'

        assert save_results(path, [component]) == 1

        result = json.loads(path.read_text(encoding='utf-8').strip())
        assert result['file_path'] == 'lib/struts2-core-2.5.10.jar'
        assert result['identifiers'][0]['scheme'] == IdentifierScheme.CPE.value
        assert result['suppressed_identifiers'][0]['value'] == 'cpe:/a:file:file:2.5.10'
        assert result['vulnerabilities'][0]['name'] == 'CVE-2017-5638'
        assert result['related'] == ['lib/struts2-core-2.5.10-sources.jar']


def test_invalid_identifiers_are_skipped():
    """Test unparseable CPE and PURL values never reach the component."""
    record = ComponentRecord.model_validate({
        'filePath': 'lib/app.jar',
        'identifiers': [
            {'scheme': 'PURL', 'value': 'not-a-purl'},
            {'scheme': 'CPE', 'value': 'cpe:/a'},
            {'scheme': 'PURL', 'value': 'pkg:maven/org.example/app@1.0'},
            {'scheme': 'GENERIC', 'value': 'anything goes'},
        ],
    })
    with capture_logs() as logs:
        component = record.to_component()

    assert [i.value for i in component.identifiers] == [
        'pkg:maven/org.example/app@1.0', 'anything goes',
    ]
    skipped = [log['value'] for log in logs if log['event'] == 'Skipping invalid identifier']
    assert skipped == ['not-a-purl', 'cpe:/a']
