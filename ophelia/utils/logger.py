"""
Logging utilities.

WHAT: Centralized logging configuration and credential masking
WHY: Consistent log format, easy logger access, no secrets in logs
HOW: Python logging with console and optional file handlers
"""

import json
import logging
import sys
from pathlib import Path

from ..core.config import settings


CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Transport libraries log every request/connection; keep them out of INFO output
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """
    Configure application logging.

    WHAT: Set up root logger with a console handler and an optional file handler
    WHY: Stream diagnostics (retries, skipped lines, outcomes) must be visible
         without leaking transport chatter or credentials
    HOW: Replace root handlers, take level/file from arguments or settings

    Args:
        level: Log level name (default LOG_LEVEL)
        log_file: Path of the debug log file; empty disables it (default LOG_FILE)

    Returns:
        The configured root logger
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    file_path = settings.LOG_FILE if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={level_name}, file={file_path or 'none'})")
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def mask_api_key(key: str) -> str:
    """Render a credential as 'abcd...***...wxyz' for logs."""
    if not key or len(key) <= 8:
        return "***"
    return f"{key[:4]}...***...{key[-4:]}"


def redact_payload(payload: dict) -> str:
    """
    Serialize a request body for logging with the system prompt masked.

    Args:
        payload: JSON-ready request body

    Returns:
        JSON string safe to log
    """
    safe = dict(payload)
    if "system" in safe:
        safe["system"] = "[MASKED]"
    options = safe.get("options")
    if isinstance(options, dict) and "system" in options:
        safe["options"] = {**options, "system": "[MASKED]"}
    return json.dumps(safe, ensure_ascii=False)
