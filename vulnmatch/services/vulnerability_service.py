"""Match the CPE identifiers of each component against the dataset."""
import structlog

from vulnmatch.models.component import Component
from vulnmatch.models.vulnerability import Vulnerability
from vulnmatch.services.dataset_service import VulnerabilityDataset

logger = structlog.get_logger('vulnerability_service')


class VulnerabilityAnalyzer:
    """Turns every dataset record whose vulnerable software covers a CPE into a finding."""

    name = 'Vulnerability Analyzer'

    def __init__(self, dataset: VulnerabilityDataset):
        self.dataset = dataset

    def initialize(self, engine) -> None:
        pass

    def close(self) -> None:
        pass

    def process(self, component: Component, engine=None) -> None:
        added = 0
        for identifier in component.cpe_identifiers():
            cpe = identifier.cpe
            if not cpe.version:
                logger.debug('CPE has no version', component=component.file_path, cpe=identifier.value)
                continue
            version = f"{cpe.version}.{cpe.update}" if cpe.update else cpe.version
            for record, _ in self.dataset.lookup_vulnerable_software(cpe.vendor, cpe.product, version):
                vulnerability = Vulnerability.from_record(record, matched_cpe=identifier.value)
                if component.add_vulnerability(vulnerability):
                    added += 1
        if added:
            logger.debug('Findings added', component=component.file_path, findings=added)
            if engine is not None:
                engine.stats.inc_findings(added)
