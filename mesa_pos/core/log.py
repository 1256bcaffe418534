"""Process-wide logging setup (rotating file under the data root + stderr)."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from .config_store import get_config_value
from .paths import LOG_DIR, ensure_storage_dirs

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_FILE = LOG_DIR / "mesa_pos.log"
_CONFIGURED = False


def configure_logging(level: str | int | None = None, *, to_file: bool = True) -> logging.Logger:
    """Install the mesa_pos handlers once; later calls only adjust the level."""
    global _CONFIGURED
    root = logging.getLogger("mesa_pos")
    resolved = level if level is not None else str(get_config_value("log_level", "INFO")).upper()
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved)
        if not isinstance(resolved, int):
            resolved = logging.INFO
    root.setLevel(resolved)
    if _CONFIGURED:
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)
    if to_file:
        ensure_storage_dirs()
        file_handler = RotatingFileHandler(_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    _CONFIGURED = True
    return root
