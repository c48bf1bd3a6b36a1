import os
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import structlog

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.errors import DatasetError
from vulnmatch.core.lock import WriteLock
from vulnmatch.core.storage import load_jsonl
from vulnmatch.core.version import DependencyVersion
from vulnmatch.models.vulnerability import VulnerabilityRecord
from vulnmatch.models.vulnerability import VulnerableSoftware

logger = structlog.get_logger('dataset_service')


class VulnerabilityDataset(Protocol):
    def vendor_products(self) -> list[tuple[str, str, str | None]]:
        ...

    def get_cpes(self, vendor: str, product: str) -> list[VulnerableSoftware]:
        ...

    def lookup_vulnerable_software(
        self, vendor: str, product: str, version: str | DependencyVersion,
    ) -> list[tuple[VulnerabilityRecord, VulnerableSoftware]]:
        ...


class JsonlVulnerabilityDataset:
    """Read-only, in-memory vulnerability dataset indexed by vendor and product."""

    def __init__(self, records: Iterable[VulnerabilityRecord] = ()):
        self._records: list[VulnerabilityRecord] = []
        self._by_pair: dict[tuple[str, str], list[tuple[VulnerabilityRecord, VulnerableSoftware]]] = {}
        self._pairs: dict[tuple[str, str, str | None], None] = {}
        for record in records:
            self.add(record)

    @classmethod
    def load(cls, path: str | Path) -> 'JsonlVulnerabilityDataset':
        path = Path(path)
        if not path.exists():
            raise DatasetError(
                f"No vulnerability dataset at {path}. Install one with 'vulnmatch db import'.",
            )
        dataset = cls(load_jsonl(path, VulnerabilityRecord))
        logger.info('Dataset loaded', path=str(path), records=len(dataset))
        return dataset

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: VulnerabilityRecord) -> None:
        self._records.append(record)
        for software in record.vulnerable_software:
            cpe = software.parsed
            key = (cpe.vendor.lower(), cpe.product.lower())
            self._by_pair.setdefault(key, []).append((record, software))
            self._pairs.setdefault((cpe.vendor, cpe.product, software.ecosystem), None)

    def vendor_products(self) -> list[tuple[str, str, str | None]]:
        """Distinct (vendor, product, ecosystem) triples in dataset order."""
        return list(self._pairs)

    def get_cpes(self, vendor: str, product: str) -> list[VulnerableSoftware]:
        seen = set()
        result = []
        for _, software in self._by_pair.get((vendor.lower(), product.lower()), []):
            if software in seen:
                continue
            seen.add(software)
            result.append(software)
        return result

    def lookup_vulnerable_software(
        self, vendor: str, product: str, version: str | DependencyVersion,
    ) -> list[tuple[VulnerabilityRecord, VulnerableSoftware]]:
        if not isinstance(version, DependencyVersion):
            version = DependencyVersion.parse(version)
        matches = []
        seen = set()
        for record, software in self._by_pair.get((vendor.lower(), product.lower()), []):
            if record.name in seen:
                continue
            if software.matches_version(version):
                seen.add(record.name)
                matches.append((record, software))
        return matches


class DatasetStore:
    """Installs the dataset into the data directory under the write lock."""

    def __init__(self, config: VulnMatchConfig | None = None, lock_factory=None):
        self.config = config or get_config()
        self._lock_factory = lock_factory or (
            lambda: WriteLock(self.config.paths.data_dir, self.config.lock)
        )

    @property
    def path(self) -> Path:
        return self.config.paths.dataset_path

    def install(self, source: str | Path) -> int:
        source = Path(source)
        if not source.exists():
            raise DatasetError(f"Dataset file not found: {source}")
        records = load_jsonl(source, VulnerabilityRecord)
        if not records:
            raise DatasetError(f"No valid records in {source}")

        with self._lock_factory():
            tmp_path = self.path.with_suffix('.jsonl.tmp')
            with tmp_path.open('w', encoding='utf-8') as f:
                for record in records:
                    f.write(record.model_dump_json(by_alias=True, exclude_none=True) + '\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        logger.info('Dataset installed', path=str(self.path), records=len(records))
        return len(records)

    def load(self) -> JsonlVulnerabilityDataset:
        return JsonlVulnerabilityDataset.load(self.path)

    def status(self) -> dict:
        exists = self.path.exists()
        return {
            'path': str(self.path),
            'installed': exists,
            'size': self.path.stat().st_size if exists else 0,
            'locked': (self.config.paths.data_dir / self.config.lock.lock_file_name).exists(),
        }
