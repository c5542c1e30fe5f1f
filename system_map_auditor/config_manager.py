"""Audit configuration backed by TOML files."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from .config import CONFIG_FILE, LOCAL_CONFIG_NAME, MAX_FILE_BYTES, SKIP_DIRS, SOURCE_EXTENSIONS
from .errors import ConfigError

logger = logging.getLogger(__name__)


# Mutation endpoint prefix -> query keys that must be invalidated afterwards
DEFAULT_INVALIDATION_RULES: Dict[str, List[str]] = {
    "/api/health-data/": ["/api/health-data", "/api/health-data/overview"],
    "/api/memories/": ["/api/memories", "/api/memories/overview"],
    "/api/conversations/": ["/api/conversations", "/api/messages"],
    "/api/files/": ["/api/files"],
}


@dataclass
class ComponentChecks:
    check_existence: bool = True
    validate_dependencies: bool = True
    check_unused_components: bool = False
    check_types: bool = True


@dataclass
class ApiChecks:
    check_handler_files: bool = True
    validate_schemas: bool = False
    check_orphaned_endpoints: bool = True
    check_database_access: bool = True


@dataclass
class FlowChecks:
    validate_steps: bool = True
    check_component_capabilities: bool = True
    validate_api_calls: bool = True
    check_cross_feature: bool = True
    check_integration_points: bool = True


@dataclass
class CacheChecks:
    check_invalidation_chains: bool = True
    check_key_consistency: bool = True
    check_semantic_keys: bool = True
    invalidation_window: int = 20
    handler_window: int = 15
    invalidation_rules: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_INVALIDATION_RULES.items()}
    )


@dataclass
class UiRefreshChecks:
    enabled: bool = True
    threshold: float = 0.7


@dataclass
class EvidenceChecks:
    enabled: bool = True
    max_age_days: int = 30


@dataclass
class DependencyChecks:
    detect_circular: bool = True
    max_depth: int = 10
    check_architecture: bool = True
    max_exports: int = 10
    heavy_threshold: int = 10
    deep_threshold: int = 5
    min_cluster_size: int = 6
    critical_path_length: int = 10


@dataclass
class ScanningConfig:
    include: List[str] = field(default_factory=lambda: ["**/*"])
    exclude: List[str] = field(default_factory=lambda: sorted(SKIP_DIRS))
    extensions: List[str] = field(default_factory=lambda: list(SOURCE_EXTENSIONS))
    max_file_bytes: int = MAX_FILE_BYTES
    prefer_ast: bool = False


@dataclass
class PerformanceConfig:
    max_execution_time: int = 30000  # milliseconds per document
    parallel: bool = False
    max_workers: int = 4


@dataclass
class AuditConfig:
    """Every toggle and threshold the validators consult."""

    components: ComponentChecks = field(default_factory=ComponentChecks)
    apis: ApiChecks = field(default_factory=ApiChecks)
    flows: FlowChecks = field(default_factory=FlowChecks)
    cache: CacheChecks = field(default_factory=CacheChecks)
    ui_refresh: UiRefreshChecks = field(default_factory=UiRefreshChecks)
    evidence: EvidenceChecks = field(default_factory=EvidenceChecks)
    dependencies: DependencyChecks = field(default_factory=DependencyChecks)
    scanning: ScanningConfig = field(default_factory=ScanningConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditConfig":
        """Build a config from nested section dictionaries.

        Unknown sections and keys are ignored with a warning. A value whose
        type does not match the default raises ConfigError.
        """
        config = cls()
        for section_name, values in data.items():
            if section_name not in _section_names():
                logger.warning("Ignoring unknown config section '%s'", section_name)
                continue
            if not isinstance(values, dict):
                raise ConfigError(f"Config section '{section_name}' must be a table")
            section = getattr(config, section_name)
            _apply_section(section, section_name, values)
        return config


def _section_names() -> List[str]:
    return [f.name for f in fields(AuditConfig)]


def _apply_section(section: Any, section_name: str, values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown config key '%s.%s'", section_name, key)
            continue
        current = getattr(section, key)
        if not _compatible(current, value):
            raise ConfigError(
                f"Config value '{section_name}.{key}' must be {type(current).__name__}, "
                f"got {type(value).__name__}"
            )
        if isinstance(current, float) and isinstance(value, int):
            value = float(value)
        setattr(section, key, value)


def _compatible(current: Any, value: Any) -> bool:
    if isinstance(current, bool):
        return isinstance(value, bool)
    if isinstance(current, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(current, int):
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, type(current))


def find_config_file(explicit: Optional[Path] = None, cwd: Optional[Path] = None) -> Optional[Path]:
    """Return the first configuration file that exists, in precedence order."""
    if explicit is not None:
        return explicit
    local = (cwd or Path.cwd()) / LOCAL_CONFIG_NAME
    if local.exists():
        return local
    if CONFIG_FILE.exists():
        return CONFIG_FILE
    return None


def load_config(path: Optional[Path] = None, cwd: Optional[Path] = None) -> AuditConfig:
    """Load audit configuration from TOML.

    Args:
        path: Explicit config file. Missing explicit files are an error.
        cwd: Directory searched for a project-local config file.

    Returns:
        AuditConfig with defaults for anything the file does not set.
    """
    config_path = find_config_file(path, cwd)
    if config_path is None:
        return AuditConfig()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = toml.load(f)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    logger.debug("Loaded configuration from %s", config_path)
    return AuditConfig.from_dict(data)


def save_config(config: AuditConfig, path: Path = CONFIG_FILE) -> Path:
    """Write *config* as TOML, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(config.to_dict(), f)
    return path
