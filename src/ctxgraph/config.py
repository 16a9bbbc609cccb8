"""Configuration management for ctxgraph."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ctxgraph.context.models import LensConfig
from ctxgraph.exceptions import ConfigError

CTXGRAPH_DIR = ".ctxgraph"
CONFIG_FILE = "config.json"
DEFAULT_DB_FILE = "index.db"


class WorkspaceConfig(BaseModel):
    """A named index database."""

    db_path: str = DEFAULT_DB_FILE  # relative paths resolve against .ctxgraph/


class ContextConfig(BaseModel):
    """Defaults for context assembly."""

    depth: int = 2
    max_tokens: int = 4000
    header_reserve: int = 200
    min_per_node: int = 50
    search_limit: int = 5
    per_seed_limit: int = 100
    phase_timeout: float | None = None  # seconds per phase; None = no deadline
    lens: str = "general"


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    default_workspace: str = "default"
    workspaces: dict[str, WorkspaceConfig] = Field(
        default_factory=lambda: {"default": WorkspaceConfig()}
    )
    context: ContextConfig = Field(default_factory=ContextConfig)
    lenses: dict[str, LensConfig] = Field(default_factory=dict)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxgraph directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXGRAPH_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXGRAPH_DIR).is_dir():
        return current
    return None


def get_ctxgraph_dir(root: Path) -> Path:
    """Get the .ctxgraph directory for a project root."""
    return root / CTXGRAPH_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxgraph/config.json."""
    config_path = get_ctxgraph_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, PydanticValidationError, TypeError) as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    return ProjectConfig(name=root.name)


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxgraph/config.json."""
    cg_dir = get_ctxgraph_dir(root)
    cg_dir.mkdir(parents=True, exist_ok=True)
    config_path = cg_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(mode="json"), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'context.depth')."""
    parts = key.split(".")
    data = config.model_dump(mode="json")
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)


def resolve_workspace(root: Path, config: ProjectConfig, alias: str | None = None) -> Path:
    """Return the database path for a workspace alias.

    Relative paths are resolved against the project's .ctxgraph directory.
    """
    name = alias or config.default_workspace
    workspace = config.workspaces.get(name)
    if workspace is None:
        known = ", ".join(sorted(config.workspaces)) or "none"
        raise ConfigError(f"Unknown workspace '{name}' (configured: {known})")

    db_path = Path(workspace.db_path).expanduser()
    if not db_path.is_absolute():
        db_path = get_ctxgraph_dir(root) / db_path
    return db_path
