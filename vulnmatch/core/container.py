"""Dependency Injection Container."""
from collections.abc import Iterable
from typing import Optional

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.engine import AnalysisPhase
from vulnmatch.core.engine import Engine
from vulnmatch.core.engine import Stage
from vulnmatch.core.lock import WriteLock
from vulnmatch.core.lock import create_shutdown_hook
from vulnmatch.models.component import Component
from vulnmatch.services.advisory_service import AdvisoryLookupAnalyzer
from vulnmatch.services.dataset_service import DatasetStore
from vulnmatch.services.dataset_service import VulnerabilityDataset
from vulnmatch.services.false_positive_service import FalsePositiveAnalyzer
from vulnmatch.services.identifier_service import CpeIdentifierAnalyzer
from vulnmatch.services.index_service import CpeMemoryIndex
from vulnmatch.services.merge_service import DependencyBundlingAnalyzer
from vulnmatch.services.merge_service import DependencyMergingAnalyzer
from vulnmatch.services.suppression_service import SuppressionAnalyzer
from vulnmatch.services.suppression_service import SuppressionEngine
from vulnmatch.services.suppression_service import SuppressionTarget
from vulnmatch.services.suppression_service import UnusedSuppressionRuleAuditor
from vulnmatch.services.vulnerability_service import VulnerabilityAnalyzer


class Container:
    """Simple DI Container to manage service lifecycles."""

    _instance: Optional['Container'] = None

    def __init__(self, config: VulnMatchConfig | None = None) -> None:
        self.config: VulnMatchConfig = config or get_config()
        self._dataset: VulnerabilityDataset | None = None
        self._index: CpeMemoryIndex | None = None

    @classmethod
    def get_instance(cls) -> 'Container':
        if cls._instance is None:
            cls._instance = Container()
        return cls._instance

    # -- Storage --

    def create_write_lock(self) -> WriteLock:
        return WriteLock(
            self.config.paths.data_dir,
            self.config.lock,
            shutdown_hook=create_shutdown_hook(self.config.lock.shutdown_hook),
        )

    def get_dataset_store(self) -> DatasetStore:
        return DatasetStore(self.config, lock_factory=self.create_write_lock)

    # -- Services (Singletons) --

    def get_dataset(self) -> VulnerabilityDataset:
        if self._dataset is None:
            self._dataset = self.get_dataset_store().load()
        return self._dataset

    def get_index(self) -> CpeMemoryIndex:
        if self._index is None:
            self._index = CpeMemoryIndex()
        return self._index

    def create_suppression_engine(self) -> SuppressionEngine:
        """Factory (not singleton: rule match flags are per scan)."""
        return SuppressionEngine(config=self.config)

    def create_stages(self, dataset: VulnerabilityDataset | None = None) -> list[Stage]:
        """The default pipeline, in execution order."""
        if dataset is None:
            dataset = self.get_dataset()
        analysis = self.config.analysis
        suppression = self.create_suppression_engine()
        advisory = AdvisoryLookupAnalyzer(self.config)
        return [
            Stage(
                DependencyMergingAnalyzer(), AnalysisPhase.POST_INFORMATION_COLLECTION,
                enabled=analysis.enable_merging, per_component=False,
            ),
            Stage(
                CpeIdentifierAnalyzer(dataset, self.get_index(), suppression, self.config),
                AnalysisPhase.IDENTIFIER_ANALYSIS,
                parallel=True, enabled=analysis.enable_identification,
            ),
            Stage(
                SuppressionAnalyzer(suppression, SuppressionTarget.IDENTIFIERS),
                AnalysisPhase.POST_IDENTIFIER_ANALYSIS,
            ),
            Stage(
                FalsePositiveAnalyzer(), AnalysisPhase.POST_IDENTIFIER_ANALYSIS,
                enabled=analysis.enable_false_positive_filter,
            ),
            Stage(VulnerabilityAnalyzer(dataset), AnalysisPhase.FINDING_ANALYSIS, parallel=True),
            Stage(
                advisory, AnalysisPhase.FINDING_ANALYSIS,
                parallel=True, enabled=advisory.enabled,
            ),
            Stage(
                SuppressionAnalyzer(suppression, SuppressionTarget.VULNERABILITIES),
                AnalysisPhase.POST_FINDING_ANALYSIS,
            ),
            Stage(
                DependencyBundlingAnalyzer(), AnalysisPhase.FINAL,
                enabled=analysis.enable_bundling, per_component=False,
            ),
            Stage(
                UnusedSuppressionRuleAuditor(suppression, self.config), AnalysisPhase.FINAL,
                per_component=False,
            ),
        ]

    def create_engine(
        self,
        components: Iterable[Component] = (),
        dataset: VulnerabilityDataset | None = None,
    ) -> Engine:
        """Factory for the analysis engine (holds state per run)."""
        return Engine(self.config, self.create_stages(dataset), components)

# Global Accessor


def get_container() -> Container:
    return Container.get_instance()
