"""
Core utilities for Receipt Bridge.

This package groups non-Flask helpers used across the bridge:
- config: paths, JSON load/save, PrinterConfig snapshots
- logging: request/job id aware logging filters, formatters and root logger config
- assets: store logo lookup
- db: durable SQLite job store
- errors: ConfigurationError / TransportError / StorageError

Exports are explicit to keep static analyzers happy.
"""

from .assets import IMAGE_EXTS, resolve_logo_path
from .config import (
    PrinterConfig,
    get_config_path,
    get_media_path,
    get_printer_config,
    load_config,
    merge_config,
    resolve_config,
    save_config,
)
from .db import Job, JobStore, get_db_path
from .errors import BridgeError, ConfigurationError, StorageError, TransportError
from .logging import ContextFilter, JsonFormatter, configure_logging, job_context

__all__ = [
    # config
    "PrinterConfig",
    "get_config_path",
    "get_media_path",
    "get_printer_config",
    "load_config",
    "merge_config",
    "resolve_config",
    "save_config",
    # logging
    "configure_logging",
    "ContextFilter",
    "JsonFormatter",
    "job_context",
    # assets
    "IMAGE_EXTS",
    "resolve_logo_path",
    # db
    "Job",
    "JobStore",
    "get_db_path",
    # errors
    "BridgeError",
    "ConfigurationError",
    "StorageError",
    "TransportError",
]
