"""Exception hierarchy for vulnmatch."""


class VulnMatchError(Exception):
    """Base class for every error raised by vulnmatch."""


class ConfigurationError(VulnMatchError):
    """Invalid or unresolvable configuration. Fatal before scanning starts."""


class SuppressionConfigError(ConfigurationError):
    pass


class SuppressionParseError(SuppressionConfigError):
    pass


class InitializationError(VulnMatchError):
    """A stage could not be initialized."""


class AnalysisError(VulnMatchError):
    """A stage failed for a single component. Collected, never aborts the run."""


class FatalAnalysisError(AnalysisError):
    """Aborts the run."""


class UnusedSuppressionRuleError(FatalAnalysisError):
    pass


class SearchIndexError(VulnMatchError):
    pass


class QueryParseError(SearchIndexError):
    pass


class DatasetError(VulnMatchError):
    pass


class LockError(VulnMatchError):
    pass


class LockAcquisitionError(LockError):
    pass
