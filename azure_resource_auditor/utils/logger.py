"""Logging setup shared by every component"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "azure_resource_auditor"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        root.propagate = False
    return root


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return a logger under the package namespace

    Handlers live on the namespace root, so callers only pick a name. Passing
    a level also adjusts the root, which is how the CLI switches to DEBUG.
    """
    root = _root_logger()
    if level:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Set the package log level and optionally mirror output to a file"""
    root = setup_logger(ROOT_LOGGER_NAME, level)

    if log_file and not any(
        isinstance(h, logging.FileHandler) and h.baseFilename.endswith(log_file) for h in root.handlers
    ):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING)
    return root
