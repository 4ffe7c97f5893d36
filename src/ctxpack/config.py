"""Configuration management for ctxpack."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CTXPACK_DIR = ".ctxpack"
CONFIG_FILE = "config.json"

DEFAULT_INCLUDE_TYPES = ["parent", "child", "epic", "story", "dependency", "relates"]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    # Zero or negative means "unset" for every tunable read this way
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


class ContextConfig(BaseModel):
    """Context aggregation configuration."""

    max_related: int = 20
    max_age_months: int = 6
    cache_ttl: int = 300  # seconds; completed-only contexts live 6x longer
    cache_capacity: int = 100
    enable_fallback: bool = True
    timeout_seconds: float = 30.0
    max_concurrency: int = 0  # 0 = one lookup per related item, all at once
    default_depth: int = 2
    include_types: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_TYPES))

    @classmethod
    def from_env(cls) -> ContextConfig:
        """Build a config from CONTEXT_* environment variables."""
        return cls(
            max_related=_env_int("CONTEXT_MAX_RELATED", 20),
            max_age_months=_env_int("CONTEXT_MAX_AGE_MONTHS", 6),
            cache_ttl=_env_int("CONTEXT_CACHE_TTL", 300),
            enable_fallback=os.environ.get("CONTEXT_ENABLE_FALLBACK", "true").lower() != "false",
            timeout_seconds=_env_float("CONTEXT_TIMEOUT", 30.0),
        )


class TrimConfig(BaseModel):
    """Token-budget trimming configuration."""

    max_units: int = 40000
    primary_change_cap: int = 2
    related_change_cap: int = 1
    primary_text_limit: int = 500
    related_text_limit: int = 200


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    workspace_file: str = "workspace.json"
    context: ContextConfig = Field(default_factory=ContextConfig)
    trim: TrimConfig = Field(default_factory=TrimConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxpack directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXPACK_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXPACK_DIR).is_dir():
        return current
    return None


def get_ctxpack_dir(root: Path) -> Path:
    """Get the .ctxpack directory for a project root."""
    return root / CTXPACK_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxpack/config.json."""
    config_path = get_ctxpack_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name, context=ContextConfig.from_env())


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxpack/config.json."""
    cp_dir = get_ctxpack_dir(root)
    cp_dir.mkdir(parents=True, exist_ok=True)
    config_path = cp_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'context.max_related')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)
