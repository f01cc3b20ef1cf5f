"""Configuration management for promptfit."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from promptfit.exceptions import ConfigError

PROMPTFIT_DIR = ".promptfit"
CONFIG_FILE = "config.json"


class EvictionGranularity(str, Enum):
    """What the evictor removes in one step."""

    UNIT = "unit"  # A single message unit
    GROUP = "group"  # A whole uniform-priority container


class MeasurementFailurePolicy(str, Enum):
    """What happens when the measurer fails for a piece of content."""

    PROPAGATE = "propagate"  # Fail the whole render
    EVICT = "evict"  # Treat as maximal size, evict first


class FailureIsolation(str, Enum):
    """How far a prepare/expand failure reaches."""

    REQUEST = "request"  # Abort the render
    SUBTREE = "subtree"  # Degrade the failing subtree to empty content


class RenderConfig(BaseModel):
    """Render engine behavior."""

    eviction_granularity: EvictionGranularity = EvictionGranularity.UNIT
    measurement_failure: MeasurementFailurePolicy = MeasurementFailurePolicy.PROPAGATE
    failure_isolation: FailureIsolation = FailureIsolation.REQUEST
    default_priority: int = Field(default=0, ge=0)
    default_role: str = "user"
    max_depth: int = Field(default=64, ge=1)


class CacheConfig(BaseModel):
    """Size cache configuration."""

    capacity: int = Field(default=4096, ge=1)


class MeasureConfig(BaseModel):
    """Configuration for the built-in measurer."""

    chars_per_token: float = Field(default=4.0, gt=0)


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    render: RenderConfig = Field(default_factory=RenderConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    measure: MeasureConfig = Field(default_factory=MeasureConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Nearest directory at or above `start` that holds a .promptfit dir."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / PROMPTFIT_DIR).is_dir():
            return candidate
    return None


def get_promptfit_dir(root: Path) -> Path:
    return root / PROMPTFIT_DIR


def load_config(root: Path) -> ProjectConfig:
    """Read .promptfit/config.json, falling back to defaults named after `root`.

    Raises:
        ConfigError: If the file exists but is not valid JSON or fails
            validation.
    """
    config_path = get_promptfit_dir(root) / CONFIG_FILE
    if not config_path.is_file():
        return ProjectConfig(name=root.name)
    try:
        # Malformed JSON surfaces as a ValidationError too.
        return ProjectConfig.model_validate_json(config_path.read_text())
    except ValidationError as e:
        raise ConfigError(f"Invalid config at {config_path}: {e}") from e


def save_config(root: Path, config: ProjectConfig) -> None:
    config_dir = get_promptfit_dir(root)
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / CONFIG_FILE).write_text(config.model_dump_json(indent=2))


def _section(data: dict[str, Any], key: str) -> tuple[dict[str, Any], str]:
    """Resolve a dotted key to (containing dict, field name)."""
    *path, field_name = key.split(".")
    section: Any = data
    for part in path:
        section = section.get(part) if isinstance(section, dict) else None
    if not isinstance(section, dict) or field_name not in section:
        raise KeyError(f"Invalid config key: {key}")
    return section, field_name


def get_config_value(config: ProjectConfig, key: str) -> Any:
    """Look up a value by dot notation (e.g. 'cache.capacity')."""
    section, field_name = _section(config.model_dump(mode="json"), key)
    return section[field_name]


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Return a copy of `config` with one dotted key replaced and revalidated."""
    data = config.model_dump(mode="json")
    section, field_name = _section(data, key)
    section[field_name] = value
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
