"""
Config utilities for Receipt Bridge.

Responsibilities:
- Resolve config/media paths with environment and XDG support
- Provide JSON load/save helpers for the bridge config
- Build immutable PrinterConfig snapshots from file values and env overrides
- Merge partial operator updates into the next config
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

DRIVERS = ("network", "usb", "bluetooth")
DEFAULT_DRIVER = "network"
DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_BT_CHANNEL = 1
DEFAULT_ENCODING = "GB18030"
DEFAULT_MAX_RETRIES = 3
DEFAULT_PORT = 1818

# Environment variable -> flat config key
ENV_OVERRIDES: Dict[str, str] = {
    "RECEIPTBRIDGE_PRINTER_DRIVER": "driver",
    "RECEIPTBRIDGE_PRINTER_ADDRESS": "address",
    "RECEIPTBRIDGE_USB_VENDOR_ID": "usb_vendor_id",
    "RECEIPTBRIDGE_USB_PRODUCT_ID": "usb_product_id",
    "RECEIPTBRIDGE_BT_ADDRESS": "bluetooth_address",
    "RECEIPTBRIDGE_BT_CHANNEL": "bluetooth_channel",
    "RECEIPTBRIDGE_PRINTER_ENCODING": "encoding",
}


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/receiptbridge/config.json
    2) ~/.config/receiptbridge/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "receiptbridge" / "config.json")
    return str(Path.home() / ".config" / "receiptbridge" / "config.json")


def default_media_path() -> str:
    """
    Resolve the default media path using:
    1) $XDG_DATA_HOME/receiptbridge/media
    2) ~/.local/share/receiptbridge/media
    """
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "receiptbridge" / "media")
    return str(Path.home() / ".local" / "share" / "receiptbridge" / "media")


def get_config_path() -> str:
    """
    Return the config path honoring RECEIPTBRIDGE_CONFIG_PATH override.
    """
    return os.environ.get("RECEIPTBRIDGE_CONFIG_PATH", default_config_path())


def get_media_path() -> str:
    """
    Return the media path honoring RECEIPTBRIDGE_MEDIA_PATH override.
    """
    return os.environ.get("RECEIPTBRIDGE_MEDIA_PATH", default_media_path())


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: Mapping[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(dict(data), f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


def normalize_hex(value: Any) -> str:
    """
    Normalize a USB id for storage: strip whitespace and a 0x prefix, lowercase.
    """
    if value is None:
        return ""
    s = str(value).strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    return s


def normalize_driver(value: Any) -> str:
    return (str(value or "").strip().lower()).replace("rfcomm", "bluetooth")


def _to_int(value: Any, default: int) -> int:
    try:
        return int(str(value).strip()) or default
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class PrinterConfig:
    """
    Immutable printer settings snapshot handed to a queue processor.

    The driver tag is kept verbatim when it is not one of DRIVERS; the
    transport factory rejects it on every attempt.
    """

    driver: str = DEFAULT_DRIVER
    address: str = DEFAULT_ADDRESS
    usb_vendor_id: str = ""
    usb_product_id: str = ""
    bluetooth_address: str = ""
    bluetooth_channel: int = DEFAULT_BT_CHANNEL
    encoding: str = DEFAULT_ENCODING
    max_retries: int = DEFAULT_MAX_RETRIES
    logo_path: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PrinterConfig":
        data = data or {}
        driver = normalize_driver(data.get("driver") or DEFAULT_DRIVER)
        logo = data.get("logo_path")
        return cls(
            driver=driver,
            address=str(data.get("address") or ""),
            usb_vendor_id=normalize_hex(data.get("usb_vendor_id")),
            usb_product_id=normalize_hex(data.get("usb_product_id")),
            bluetooth_address=str(data.get("bluetooth_address") or "").strip(),
            bluetooth_channel=_to_int(data.get("bluetooth_channel"), DEFAULT_BT_CHANNEL),
            encoding=str(data.get("encoding") or DEFAULT_ENCODING),
            max_retries=_to_int(data.get("max_retries"), DEFAULT_MAX_RETRIES),
            logo_path=str(logo) if logo else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_config() -> dict[str, Any]:
    return {
        "port": DEFAULT_PORT,
        "driver": DEFAULT_DRIVER,
        "address": DEFAULT_ADDRESS,
        "usb_vendor_id": "",
        "usb_product_id": "",
        "bluetooth_address": "",
        "bluetooth_channel": DEFAULT_BT_CHANNEL,
        "encoding": DEFAULT_ENCODING,
    }


def resolve_config(path: Optional[str] = None) -> dict[str, Any]:
    """
    Return the effective flat config: defaults, then the JSON file, then env overrides.
    """
    cfg = default_config()
    cfg.update(load_config(path) or {})
    for env_key, cfg_key in ENV_OVERRIDES.items():
        if env_key in os.environ:
            cfg[cfg_key] = os.environ[env_key]
    return cfg


def get_printer_config(path: Optional[str] = None) -> PrinterConfig:
    return PrinterConfig.from_mapping(resolve_config(path))


def merge_config(current: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """
    Build the next config from a partial operator update.

    Accepts either a flat update or one nested under "printer", with optional
    "usb": {"vendorId", "productId"} and camelCase aliases used by POS panels.
    Fields absent from the update keep their current value.
    """
    printer = update.get("printer") if isinstance(update.get("printer"), Mapping) else update
    usb = printer.get("usb") if isinstance(printer.get("usb"), Mapping) else {}

    def pick(*candidates: Any) -> Any:
        for c in candidates:
            if c is not None:
                return c
        return None

    nxt = dict(current)
    if update.get("port") is not None:
        nxt["port"] = _to_int(update.get("port"), int(current.get("port") or DEFAULT_PORT))

    driver = pick(printer.get("driver"), current.get("driver"), DEFAULT_DRIVER)
    nxt["driver"] = normalize_driver(driver)
    nxt["encoding"] = pick(printer.get("encoding"), current.get("encoding"), DEFAULT_ENCODING)
    nxt["address"] = pick(printer.get("address"), current.get("address"), "")
    nxt["bluetooth_address"] = pick(
        printer.get("bluetooth_address"), printer.get("bluetoothAddress"), current.get("bluetooth_address"), ""
    )
    channel = pick(
        printer.get("bluetooth_channel"),
        printer.get("bluetoothChannel"),
        printer.get("btChannel"),
        current.get("bluetooth_channel"),
    )
    nxt["bluetooth_channel"] = _to_int(channel, DEFAULT_BT_CHANNEL)

    vendor = normalize_hex(pick(usb.get("vendorId"), printer.get("usb_vendor_id"), printer.get("usbVendorId")))
    product = normalize_hex(pick(usb.get("productId"), printer.get("usb_product_id"), printer.get("usbProductId")))
    nxt["usb_vendor_id"] = vendor or current.get("usb_vendor_id", "")
    nxt["usb_product_id"] = product or current.get("usb_product_id", "")
    return nxt


__all__ = [
    "DEFAULT_PORT",
    "DRIVERS",
    "ENV_OVERRIDES",
    "PrinterConfig",
    "default_config",
    "default_config_path",
    "default_media_path",
    "get_config_path",
    "get_media_path",
    "get_printer_config",
    "load_config",
    "merge_config",
    "normalize_driver",
    "normalize_hex",
    "resolve_config",
    "save_config",
]
