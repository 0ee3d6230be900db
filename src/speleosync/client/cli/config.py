"""Configuration utilities for the speleosync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path

STATE_DB_NAME = "projects.db"


def get_config_dir() -> Path:
    """Get the configuration directory for speleosync.

    Returns:
        Path to ~/.speleosync or equivalent.
    """
    return Path.home() / ".speleosync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_projects_dir() -> Path:
    """Get the directory holding local project files.

    Returns:
        Path to the projects folder (configured or default ~/.speleosync/projects).
    """
    config = load_config()
    if config.get("projects_dir"):
        return Path(config["projects_dir"]).expanduser().resolve()
    return get_config_dir() / "projects"


def get_state_db() -> Path:
    """Get the path of the project metadata database."""
    return get_projects_dir() / STATE_DB_NAME
