import json
from pathlib import Path

import pytest

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.errors import DatasetError
from vulnmatch.core.version import DependencyVersion
from vulnmatch.models.vulnerability import VulnerabilityRecord
from vulnmatch.models.vulnerability import VulnerableSoftware
from vulnmatch.services.dataset_service import DatasetStore
from vulnmatch.services.dataset_service import JsonlVulnerabilityDataset

RECORDS = [
    {
        'name': 'CVE-2017-5638',
        'description': 'Jakarta Multipart parser remote code execution',
        'cvssScore': 10.0,
        'severity': 'CRITICAL',
        'cwes': ['CWE-20'],
        'vulnerableSoftware': [
            {'cpe': 'cpe:/a:apache:struts:2.5.10', 'ecosystem': 'java'},
            {'cpe': 'cpe:/a:apache:struts:2.3.31', 'ecosystem': 'java'},
        ],
    },
    {
        'name': 'CVE-2020-0001',
        'cvssScore': 5.3,
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
        'cvssScore': 9.1,
        'vulnerableSoftware': [
            {'cpe': 'cpe:/a:lodash:lodash', 'ecosystem': 'npm', 'versionEndExcluding': '4.17.12'},
        ],
    },
]


def make_dataset():
    return JsonlVulnerabilityDataset(VulnerabilityRecord.model_validate(r) for r in RECORDS)


def write_jsonl(path: Path, items):
    path.write_text('\n'.join(json.dumps(item) for item in items) + '\n', encoding='utf-8')


class TestVulnerableSoftware:
    """Tests for VulnerableSoftware.matches_version."""

    def test_exact_version(self):
        software = VulnerableSoftware(cpe='cpe:/a:apache:struts:2.5.10')
        assert software.matches_version(DependencyVersion.parse('2.5.10'))
        assert software.matches_version(DependencyVersion.parse('2.5.10.0'))
        assert not software.matches_version(DependencyVersion.parse('2.5.11'))

    def test_range_bounds(self):
        software = VulnerableSoftware.model_validate({
            'cpe': 'cpe:/a:apache:struts',
            'versionStartExcluding': '1.0',
            'versionEndIncluding': '2.0',
        })
        assert not software.matches_version(DependencyVersion.parse('1.0'))
        assert software.matches_version(DependencyVersion.parse('1.5'))
        assert software.matches_version(DependencyVersion.parse('2.0'))
        assert not software.matches_version(DependencyVersion.parse('2.0.1'))

    def test_dash_version_never_matches(self):
        software = VulnerableSoftware(cpe='cpe:/a:apache:struts:-')
        assert not software.matches_version(DependencyVersion.parse('2.0'))

    def test_invalid_cpe_is_rejected(self):
        with pytest.raises(ValueError):
            VulnerableSoftware(cpe='apache:struts')


class TestJsonlVulnerabilityDataset:
    """Tests for the in-memory dataset."""

    def test_vendor_products_are_distinct(self):
        dataset = make_dataset()
        assert dataset.vendor_products() == [
            ('apache', 'struts', 'java'),
            ('lodash', 'lodash', 'npm'),
        ]

    def test_get_cpes_is_case_insensitive(self):
        cpes = make_dataset().get_cpes('Apache', 'STRUTS')
        assert [c.cpe for c in cpes] == [
            'cpe:/a:apache:struts:2.5.10',
            'cpe:/a:apache:struts:2.3.31',
            'cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*',
        ]

    def test_lookup_exact_and_range(self):
        """Test both an exact CPE and a range cover the version."""
        matches = make_dataset().lookup_vulnerable_software('apache', 'struts', '2.5.10')
        assert [record.name for record, _ in matches] == ['CVE-2017-5638', 'CVE-2020-0001']

    def test_lookup_outside_range(self):
        assert make_dataset().lookup_vulnerable_software('apache', 'struts', '2.5.12') == []

    def test_lookup_unknown_pair(self):
        assert make_dataset().lookup_vulnerable_software('acme', 'widget', '1.0') == []

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(DatasetError):
            JsonlVulnerabilityDataset.load(tmp_path / 'missing.jsonl')

    def test_load_skips_invalid_lines(self, tmp_path):
        path = tmp_path / 'vulns.jsonl'
        write_jsonl(path, RECORDS + [{'description': 'no name'}])
        dataset = JsonlVulnerabilityDataset.load(path)
        assert len(dataset) == 3


class TestDatasetStore:
    """Tests for DatasetStore."""

    @pytest.fixture
    def config(self, tmp_path):
        config = VulnMatchConfig()
        config.paths.data_dir = tmp_path / 'data'
        config.paths.data_dir.mkdir()
        config.lock.max_attempts = 1
        return config

    def test_install_and_load(self, tmp_path, config):
        source = tmp_path / 'source.jsonl'
        write_jsonl(source, RECORDS)
        store = DatasetStore(config)

        assert store.install(source) == 3
        assert store.path.exists()
        assert not store.path.with_suffix('.jsonl.tmp').exists()
        assert len(store.load()) == 3

    def test_install_releases_lock(self, tmp_path, config):
        source = tmp_path / 'source.jsonl'
        write_jsonl(source, RECORDS)
        DatasetStore(config).install(source)
        assert not (config.paths.data_dir / config.lock.lock_file_name).exists()

    def test_install_missing_source(self, tmp_path, config):
        with pytest.raises(DatasetError):
            DatasetStore(config).install(tmp_path / 'nope.jsonl')

    def test_install_without_valid_records(self, tmp_path, config):
        source = tmp_path / 'source.jsonl'
        write_jsonl(source, [{'description': 'no name'}])
        with pytest.raises(DatasetError):
            DatasetStore(config).install(source)

    def test_status(self, tmp_path, config):
        store = DatasetStore(config)
        assert store.status() == {
            'path': str(store.path),
            'installed': False,
            'size': 0,
            'locked': False,
        }

        source = tmp_path / 'source.jsonl'
        write_jsonl(source, RECORDS)
        store.install(source)
        status = store.status()
        assert status['installed'] is True
        assert status['size'] > 0
