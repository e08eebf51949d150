"""Centralized path definitions for mailfetch.

All paths hang off a single base directory, ``~/.mailfetch`` by default.
Set ``MAILFETCH_HOME`` to relocate it (containers, tests).
"""

import os
from pathlib import Path


def get_base_dir() -> Path:
    """Base application directory."""
    override = os.environ.get("MAILFETCH_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mailfetch"


def get_logs_dir() -> Path:
    return get_base_dir() / "logs"


def get_config_path() -> Path:
    """Config file location, ``MAILFETCH_CONFIG`` wins over the base dir."""
    override = os.environ.get("MAILFETCH_CONFIG")
    if override:
        return Path(override).expanduser()
    return get_base_dir() / "config.json"
