"""Configuration management for vulnmatch."""
import os
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path

import dotenv


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, '')
    return [item.strip() for item in raw.split(',') if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class ShutdownHookStrategy(str, Enum):
    """How a held write lock is released when the interpreter exits."""
    ATEXIT = 'atexit'
    NONE = 'none'

    def __str__(self) -> str:
        return self.value


@dataclass
class PathConfig:
    """File path configuration."""
    data_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv('VULNMATCH_DATA_DIR', 'data'),
        ),
    )

    @property
    def dataset_path(self) -> Path:
        """Installed vulnerability dataset, one record per line."""
        return self.data_dir / 'vulnerabilities.jsonl'

    @property
    def http_cache(self) -> Path:
        """Cache of downloaded suppression files."""
        return self.data_dir / '.requests-cache' / 'db.sqlite3'


@dataclass
class LockConfig:
    """Cross-process write lock guarding the data directory."""
    lock_file_name: str = 'vulnmatch.update.lock'
    max_attempts: int = field(
        default_factory=lambda: int(
            os.getenv('VULNMATCH_LOCK_ATTEMPTS', '160'),
        ),
    )
    retry_interval: float = 15.0
    stale_after: float = 30 * 60  # 30 minutes in seconds
    confirm_delay: float = 0.02
    shutdown_hook: ShutdownHookStrategy = field(
        default_factory=lambda: ShutdownHookStrategy(
            os.getenv('VULNMATCH_SHUTDOWN_HOOK', 'atexit'),
        ),
    )


@dataclass
class SuppressionConfig:
    files: list[str] = field(
        default_factory=lambda: _env_list('VULNMATCH_SUPPRESSION_FILES'),
    )
    include_base: bool = True
    fail_on_unused_rule: bool = field(
        default_factory=lambda: _env_bool(
            'VULNMATCH_FAIL_ON_UNUSED_SUPPRESSION', False,
        ),
    )


@dataclass
class AnalysisConfig:
    workers: int = field(
        default_factory=lambda: int(
            os.getenv('VULNMATCH_WORKERS', str(min(8, os.cpu_count() or 1))),
        ),
    )
    max_query_results: int = 25
    skip_ecosystems: list[str] = field(default_factory=list)
    enable_identification: bool = True
    enable_false_positive_filter: bool = True
    enable_merging: bool = True
    enable_bundling: bool = True


@dataclass
class AdvisoryConfig:
    """Remote advisory service used to enrich findings by package URL."""
    url: str | None = field(
        default_factory=lambda: os.getenv('VULNMATCH_ADVISORY_URL'),
    )
    username: str | None = field(
        default_factory=lambda: os.getenv('VULNMATCH_ADVISORY_USER'),
    )
    token: str | None = field(
        default_factory=lambda: os.getenv('VULNMATCH_ADVISORY_TOKEN'),
    )
    timeout: float = 30.0
    batch_size: int = 128
    warn_only: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def __repr__(self) -> str:
        return (
            f"AdvisoryConfig(url={self.url!r}, username={self.username!r}, "
            f"token='*****', timeout={self.timeout!r}, batch_size={self.batch_size!r}, "
            f"warn_only={self.warn_only!r})"
        )


@dataclass
class VulnMatchConfig:
    paths: PathConfig = field(default_factory=PathConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    suppression: SuppressionConfig = field(default_factory=SuppressionConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    advisory: AdvisoryConfig = field(default_factory=AdvisoryConfig)

    @classmethod
    def load(cls) -> 'VulnMatchConfig':
        return cls()


_config: VulnMatchConfig | None = None


def get_config() -> VulnMatchConfig:
    global _config
    if _config is None:
        _config = VulnMatchConfig.load()
    return _config


def load_env_file() -> bool:
    """Load a .env file from the working directory. Set variables win."""
    return dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
