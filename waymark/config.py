from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

PROJECT_MARKERS = ("waymark.yaml", ".waymark")
DEFAULT_ROOT_DIR = ".waymark"


class CheckpointConfig(BaseModel):
    """Checkpoint retention settings."""

    keep_last: Optional[int] = Field(default=None, ge=1)


class WaymarkConfig(BaseModel):
    """Top-level configuration model."""

    root: Optional[str] = None
    log_level: str = "WARNING"
    checkpoints: CheckpointConfig = CheckpointConfig()


def find_project_root(start: Optional[Path] = None, max_depth: int = 10) -> Optional[Path]:
    """Walk up from ``start`` looking for a ``waymark.yaml`` or ``.waymark`` marker."""
    directory = (start or Path.cwd()).resolve()
    for _ in range(max_depth):
        if any((directory / marker).exists() for marker in PROJECT_MARKERS):
            return directory
        if directory.parent == directory:
            break
        directory = directory.parent
    return None


def load_config(path: Optional[str] = None) -> WaymarkConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to WAYMARK_CONFIG env
            variable or 'waymark.yaml' in the current directory.
    """

    config_path = path or os.getenv("WAYMARK_CONFIG", "waymark.yaml")
    if os.path.isfile(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = WaymarkConfig(**data)
    else:
        config = WaymarkConfig()

    env_root = os.getenv("WAYMARK_ROOT")
    if env_root:
        config.root = env_root
    return config


def resolve_root(config: WaymarkConfig) -> Path:
    """Storage root: configured ``root`` or ``<project-root>/.waymark``."""
    if config.root:
        return Path(config.root).expanduser()
    project_root = find_project_root() or Path.cwd()
    return project_root / DEFAULT_ROOT_DIR
