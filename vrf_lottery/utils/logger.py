"""Shared logging utilities for the lottery service.

Every module asks ``get_logger(__name__)`` for its logger. The root logger is
configured once, on first use, from the environment:

- ``LOG_LEVEL``: level name, ``INFO`` by default
- ``LOG_FILE``: optional path; when set, records are also appended there
- ``LOG_FORMAT``: optional ``logging.Formatter`` format string
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


_configured = False

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty at INFO/DEBUG; only their warnings are of interest here.
QUIET_LOGGERS = ('web3.providers.HTTPProvider', 'web3.RequestManager', 'urllib3', 'httpx')


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    level = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    log_file = os.getenv('LOG_FILE', '')
    formatter = logging.Formatter(os.getenv('LOG_FORMAT') or DEFAULT_LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding='utf-8')
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError:
            root.exception('Cannot write log file %s; logging to console only', log_file)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger for ``name``, configuring the root logger on first call."""
    _ensure_configured()
    return logging.getLogger(name)
