"""Logging configuration for the storefront.

Console output for humans plus an optional JSONL file for structured events.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

__all__ = ["setup_logging", "get_logger", "LOG_DIR"]

LOG_DIR = Path(__file__).parent / "logs"
ROOT_LOGGER = "mobilehub"


class JSONLFileHandler(logging.Handler):
    """Writes one JSON object per record, one file per day."""

    def __init__(self, log_dir: Path, prefix: str = "mobilehub"):
        super().__init__()
        self.log_dir = log_dir
        self.log_dir.mkdir(exist_ok=True)
        self.prefix = prefix

    def _get_log_file(self) -> Path:
        return self.log_dir / f"{self.prefix}_{datetime.now().strftime('%Y%m%d')}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.now().isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if hasattr(record, "event_type"):
                entry["event_type"] = record.event_type
            with open(self._get_log_file(), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except Exception:
            self.handleError(record)


def setup_logging(
    level: int = logging.INFO,
    log_to_console: bool = True,
    log_to_file: bool = False,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Set up the ``mobilehub`` logger tree.

    Args:
        level: Logging level (default: INFO)
        log_to_console: Whether to log to stdout
        log_to_file: Whether to also write JSONL records
        log_dir: Custom log directory (default: ./logs)

    Returns:
        The configured root logger for the app
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S")
        )
        logger.addHandler(console_handler)

    if log_to_file:
        file_handler = JSONLFileHandler(log_dir or LOG_DIR)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger under the ``mobilehub`` namespace."""
    if name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
