"""
Error taxonomy for Receipt Bridge.

- ConfigurationError: missing/invalid printer parameters or an unknown driver
- TransportError: the printer could not be reached, opened, or written to
- StorageError: the job store could not persist or read a job
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors raised by the bridge core."""


class ConfigurationError(BridgeError):
    pass


class TransportError(BridgeError):
    pass


class StorageError(BridgeError):
    pass


__all__ = ["BridgeError", "ConfigurationError", "StorageError", "TransportError"]
