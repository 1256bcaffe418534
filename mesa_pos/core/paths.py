"""Centralised storage paths for Mesa POS terminals and servers."""
from __future__ import annotations

import os
from pathlib import Path

__all__ = [
    "BASE_DIR",
    "DATA_DIR",
    "CONFIG_DIR",
    "LOG_DIR",
    "PRINTS_DIR",
    "DB_PATH",
    "SETTINGS_FILE",
    "ensure_storage_dirs",
]


def _detect_base_dir() -> Path:
    env_override = os.getenv("MESA_POS_DATA_ROOT")
    if env_override:
        return Path(env_override).expanduser().resolve()

    if os.name == "nt":
        program_data = os.environ.get("PROGRAMDATA") or r"C:\\ProgramData"
        return Path(program_data) / "MesaPOS"

    return Path.home() / ".mesa_pos"


BASE_DIR = _detect_base_dir()
DATA_DIR = BASE_DIR / "data"
CONFIG_DIR = BASE_DIR / "config"
LOG_DIR = BASE_DIR / "logs"
PRINTS_DIR = BASE_DIR / "prints"

DB_PATH = DATA_DIR / "mesa_pos.db"
SETTINGS_FILE = CONFIG_DIR / "settings.json"


def ensure_storage_dirs() -> None:
    """Create the directory tree required for persistent storage."""
    for path in (DATA_DIR, CONFIG_DIR, LOG_DIR, PRINTS_DIR):
        path.mkdir(parents=True, exist_ok=True)
