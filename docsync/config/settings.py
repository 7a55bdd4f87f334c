"""Settings for docsync.

Settings are a pydantic model tree. They can be loaded from a YAML file
(deep-merged over the defaults) and overridden from ``DOCSYNC_*`` environment
variables. Components receive the relevant sub-model through their
constructors; nothing reads settings from module globals.
"""

import os
import logging
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "docsync/1.0 (Documentation Fetcher)"

DEFAULT_ALLOWED_DOMAINS = [
    "docs.spring.io",
    "spring.io",
    "springdoc.org",
    "www.baeldung.com",
]

# Project overview pages build their content client-side.
DEFAULT_RENDERED_URL_PATTERNS = [
    r"^https?://spring\.io/projects/[^/?#]+/?$",
]

DEFAULT_GENERATIONS_FEED_URL = "https://spring.io/api/projects"

CONFIG_ENV_VAR = "DOCSYNC_CONFIG"
ENV_PREFIX = "DOCSYNC_"


class FetchConfig(BaseModel):
    """HTTP fetch settings."""
    timeout_ms: int = Field(default=30000, gt=0, description="Per-request timeout in milliseconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header sent with every request")
    allowed_domains: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_DOMAINS))
    rendered_url_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_RENDERED_URL_PATTERNS))
    render_wait_ms: int = Field(default=10000, ge=0, description="Upper bound on waiting for rendered content")
    render_selector: str = Field(default=".markdown.content", description="Element awaited on rendered pages")

    @field_validator("allowed_domains")
    @classmethod
    def _normalize_domains(cls, value: List[str]) -> List[str]:
        return [d.strip().lower() for d in value if d and d.strip()]

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class RetryConfig(BaseModel):
    """Exponential backoff settings for transient fetch failures."""
    max_attempts: int = Field(default=3, ge=1)
    delay_ms: int = Field(default=5000, ge=0, description="Delay before the first retry")
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: Optional[int] = Field(default=None, ge=0, description="Ceiling for any single delay")

    @property
    def max_backoff_ms(self) -> int:
        """Delay ceiling, ``delay * multiplier ** max_attempts`` unless set."""
        if self.max_delay_ms is not None:
            return self.max_delay_ms
        return int(self.delay_ms * self.multiplier ** self.max_attempts)


class IndexingConfig(BaseModel):
    """Batch indexing settings."""
    batch_size: int = Field(default=100, gt=0)
    parallel: bool = True
    max_workers: int = Field(default=4, gt=0)
    termination_timeout_s: float = Field(default=60.0, gt=0)


class JobConfig(BaseModel):
    """A single scheduled job."""
    enabled: bool = True
    cron: str

    @field_validator("cron")
    @classmethod
    def _five_fields(cls, value: str) -> str:
        if len(value.split()) != 5:
            raise ValueError(f"cron expression must have 5 fields: {value!r}")
        return value


def _job(cron: str):
    return Field(default_factory=lambda: JobConfig(cron=cron))


class JobsConfig(BaseModel):
    comprehensive_sync: JobConfig = _job("0 1 * * *")
    documentation_sync: JobConfig = _job("0 2 * * *")
    version_detection: JobConfig = _job("0 * * * *")
    content_refresh: JobConfig = _job("0 3 * * sun")
    eol_cleanup: JobConfig = _job("0 4 1 * *")


class SchedulerConfig(BaseModel):
    """Orchestration settings."""
    enabled: bool = True
    auto_detect_versions: bool = True
    refresh_batch_size: int = Field(default=50, gt=0)
    timezone: str = "UTC"
    version_policy: str = Field(default="all", description="'all' or 'recent-minors'")
    jobs: JobsConfig = Field(default_factory=JobsConfig)

    @field_validator("version_policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        if value not in ("all", "recent-minors"):
            raise ValueError(f"unknown version policy: {value!r}")
        return value

    def job(self, name: str) -> JobConfig:
        return getattr(self.jobs, name)


class DatabaseConfig(BaseModel):
    url: str = "sqlite:///docsync.db"
    echo: bool = False


class CatalogConfig(BaseModel):
    generations_feed_url: str = DEFAULT_GENERATIONS_FEED_URL


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    use_colors: bool = True
    log_file: Optional[str] = None


class SyncSettings(BaseModel):
    """Root settings object."""
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncSettings":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    @classmethod
    def from_yaml(cls, path: str) -> "SyncSettings":
        """Load settings from a YAML file, deep-merged over the defaults."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        logger.info(f"Loaded settings from {path}")
        return cls.from_dict(deep_merge(cls().model_dump(), file_config))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "SyncSettings":
        """Create settings from defaults plus ``DOCSYNC_*`` environment variables."""
        return cls.from_dict(apply_env_overrides(cls().model_dump(), environ))


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _coerce_env_value(raw: str) -> Any:
    # YAML scalars give us bools, ints, floats and lists for free
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply ``DOCSYNC_SECTION__KEY`` style environment overrides.

    Nested keys are separated by a double underscore, for example
    ``DOCSYNC_RETRY__MAX_ATTEMPTS=5`` or
    ``DOCSYNC_SCHEDULER__JOBS__EOL_CLEANUP__ENABLED=false``. Comma separated
    values are accepted for list settings such as
    ``DOCSYNC_FETCH__ALLOWED_DOMAINS``.

    Args:
        config: Settings dictionary to update
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        A new settings dictionary with the overrides applied
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or name == CONFIG_ENV_VAR:
            continue
        path = [part.lower() for part in name[len(ENV_PREFIX):].split("__") if part]
        if len(path) < 2:
            continue

        value = _coerce_env_value(raw)
        if path[-1] in ("allowed_domains", "rendered_url_patterns") and isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]

        target = overrides
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value

    return deep_merge(config, overrides)


def find_config_file(path: Optional[str] = None) -> Optional[str]:
    """Locate the settings file to load, if any."""
    if path:
        if not os.path.exists(path):
            raise ConfigurationError(f"Config file not found: {path}")
        return path

    possible_paths = [
        os.environ.get(CONFIG_ENV_VAR),
        os.path.join(os.getcwd(), "config", "docsync.yaml"),
    ]

    for candidate in possible_paths:
        if candidate and os.path.exists(candidate):
            return candidate

    return None


def load_settings(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> SyncSettings:
    """Load settings from the first config file found, then apply env overrides."""
    config_path = find_config_file(path)

    if config_path:
        base = SyncSettings.from_yaml(config_path).model_dump()
    else:
        logger.info("No config file found, using defaults")
        base = SyncSettings().model_dump()

    return SyncSettings.from_dict(apply_env_overrides(base, environ))
