"""Runs analysis stages over the component set, phase by phase."""
import threading
from collections.abc import Callable
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Protocol

import structlog

from vulnmatch.core.config import VulnMatchConfig
from vulnmatch.core.config import get_config
from vulnmatch.core.errors import AnalysisError
from vulnmatch.core.errors import ConfigurationError
from vulnmatch.core.errors import FatalAnalysisError
from vulnmatch.core.errors import InitializationError
from vulnmatch.core.stats import ScanStats
from vulnmatch.models.component import Component

logger = structlog.get_logger('engine')


class AnalysisPhase(str, Enum):
    INITIAL = 'initial'
    PRE_INFORMATION_COLLECTION = 'pre_information_collection'
    INFORMATION_COLLECTION = 'information_collection'
    POST_INFORMATION_COLLECTION = 'post_information_collection'
    PRE_IDENTIFIER_ANALYSIS = 'pre_identifier_analysis'
    IDENTIFIER_ANALYSIS = 'identifier_analysis'
    POST_IDENTIFIER_ANALYSIS = 'post_identifier_analysis'
    PRE_FINDING_ANALYSIS = 'pre_finding_analysis'
    FINDING_ANALYSIS = 'finding_analysis'
    POST_FINDING_ANALYSIS = 'post_finding_analysis'
    FINAL = 'final'

    def __str__(self) -> str:
        return self.value


# Execution order of the phases
PHASE_ORDER = (
    AnalysisPhase.INITIAL,
    AnalysisPhase.PRE_INFORMATION_COLLECTION,
    AnalysisPhase.INFORMATION_COLLECTION,
    AnalysisPhase.POST_INFORMATION_COLLECTION,
    AnalysisPhase.PRE_IDENTIFIER_ANALYSIS,
    AnalysisPhase.IDENTIFIER_ANALYSIS,
    AnalysisPhase.POST_IDENTIFIER_ANALYSIS,
    AnalysisPhase.PRE_FINDING_ANALYSIS,
    AnalysisPhase.FINDING_ANALYSIS,
    AnalysisPhase.POST_FINDING_ANALYSIS,
    AnalysisPhase.FINAL,
)


class Analyzer(Protocol):
    name: str

    def initialize(self, engine: 'Engine') -> None:
        ...

    def process(self, component: Component, engine: 'Engine') -> None:
        ...

    def close(self) -> None:
        ...


class SetAnalyzer(Protocol):
    """An analyzer that works on the whole component set at once."""
    name: str

    def initialize(self, engine: 'Engine') -> None:
        ...

    def process_all(self, engine: 'Engine') -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class Stage:
    """Where and how an analyzer runs."""
    analyzer: Analyzer | SetAnalyzer
    phase: AnalysisPhase
    parallel: bool = False
    enabled: bool = True
    per_component: bool = True
    accepts: Callable[[Component], bool] | None = None

    @property
    def name(self) -> str:
        return self.analyzer.name


@dataclass
class AnalysisReport:
    components: list[Component]
    errors: list[AnalysisError] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)


class Engine:
    """
    Holds the component set and drives the registered stages.

    Phases run strictly in ``PHASE_ORDER`` and every stage of a phase sees
    the whole active set before the next stage starts. Stages marked
    ``parallel`` spread components over a thread pool. Components absorbed
    by a merge stay in the list until the compaction that follows each
    stage.
    """

    def __init__(
        self,
        config: VulnMatchConfig | None = None,
        stages: Iterable[Stage] = (),
        components: Iterable[Component] = (),
    ):
        self.config = config or get_config()
        self.stages: list[Stage] = list(stages)
        self._components: list[Component] = list(components)
        self._lock = threading.Lock()
        self.stats = ScanStats()

    def register(self, stage: Stage) -> None:
        self.stages.append(stage)

    def add_component(self, component: Component) -> None:
        with self._lock:
            self._components.append(component)

    @property
    def components(self) -> list[Component]:
        """The active (not absorbed) components in discovery order."""
        with self._lock:
            return [c for c in self._components if not c.absorbed]

    def compact(self) -> int:
        """Drop absorbed components. Returns how many were removed."""
        with self._lock:
            before = len(self._components)
            self._components = [c for c in self._components if not c.absorbed]
            removed = before - len(self._components)
        if removed:
            self.stats.inc_merged(removed)
        return removed

    def analyze(self) -> AnalysisReport:
        enabled = [stage for stage in self.stages if stage.enabled]
        errors: list[AnalysisError] = []
        initialized: list[Stage] = []
        self.stats.components = len(self.components)
        try:
            for stage in enabled:
                self._initialize(stage)
                initialized.append(stage)

            for phase in PHASE_ORDER:
                for stage in (s for s in enabled if s.phase == phase):
                    self._run_stage(stage, errors)
                    self.compact()
        finally:
            for stage in reversed(initialized):
                self._close(stage)

        components = self.components
        logger.info(
            'Analysis complete',
            components=len(components),
            errors=len(errors),
            elapsed=round(self.stats.elapsed_time, 2),
        )
        return AnalysisReport(components, errors, self.stats)

    def _initialize(self, stage: Stage) -> None:
        logger.debug('Initializing stage', stage=stage.name)
        try:
            stage.analyzer.initialize(self)
        except (ConfigurationError, InitializationError):
            raise
        except Exception as e:
            raise InitializationError(f"Failed to initialize {stage.name}: {e}") from e

    def _close(self, stage: Stage) -> None:
        try:
            stage.analyzer.close()
        except Exception:
            logger.exception('Failed to close stage', stage=stage.name)

    def _run_stage(self, stage: Stage, errors: list[AnalysisError]) -> None:
        if not stage.per_component:
            logger.debug('Running stage', stage=stage.name, phase=str(stage.phase))
            self._guard(stage, None, lambda: stage.analyzer.process_all(self), errors)
            return

        components = [
            c for c in self.components
            if stage.accepts is None or stage.accepts(c)
        ]
        logger.debug(
            'Running stage', stage=stage.name, phase=str(stage.phase), components=len(components),
        )
        workers = max(1, self.config.analysis.workers)
        if stage.parallel and workers > 1 and len(components) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._process, stage, component)
                    for component in components
                ]
                for future in as_completed(futures):
                    error = future.result()
                    if error is not None:
                        errors.append(error)
        else:
            for component in components:
                error = self._process(stage, component)
                if error is not None:
                    errors.append(error)

    def _process(self, stage: Stage, component: Component) -> AnalysisError | None:
        errors: list[AnalysisError] = []
        self._guard(stage, component, lambda: stage.analyzer.process(component, self), errors)
        return errors[0] if errors else None

    def _guard(
        self,
        stage: Stage,
        component: Component | None,
        action: Callable[[], None],
        errors: list[AnalysisError],
    ) -> None:
        target = component.file_path if component is not None else None
        try:
            action()
        except FatalAnalysisError:
            raise
        except AnalysisError as e:
            logger.warning('Stage failed', stage=stage.name, component=target, error=str(e))
            self.stats.inc_errors()
            errors.append(e)
        except Exception as e:
            logger.exception('Unexpected stage failure', stage=stage.name, component=target)
            self.stats.inc_errors()
            errors.append(AnalysisError(f"{stage.name} failed for {target}: {e}"))
