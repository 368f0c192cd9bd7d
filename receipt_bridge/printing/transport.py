"""
Printer transports for Receipt Bridge.

One contract (open / write / close plus a few ESC/POS primitives) over three
python-escpos connection types:

- network:   TCP to <address>:9100 (escpos.printer.Network)
- usb:       vendor/product id match (escpos.printer.Usb)
- bluetooth: serial over an RFCOMM binding at /dev/rfcomm0 (escpos.printer.Serial)

create_transport() validates the driver tag and the driver's parameters before
any device is touched. printer_session() is the only way the rest of the
bridge acquires a device: it holds the process-wide DEVICE_LOCK and always
closes the transport, so two device sessions never overlap.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Type

from receipt_bridge.core.config import PrinterConfig
from receipt_bridge.core.errors import BridgeError, ConfigurationError, TransportError

logger = logging.getLogger(__name__)

NETWORK_PORT = 9100
RFCOMM_SLOT = "0"
RFCOMM_DEVICE = "/dev/rfcomm0"
SERIAL_BAUDRATE = 9600
DRAWER_PIN = 2

# Held for the full lifetime of every device session (print, drawer kick, probe).
DEVICE_LOCK = threading.Lock()


def _parse_usb_id(label: str, value: Any) -> int:
    s = str(value or "").strip()
    if not s:
        raise ConfigurationError(f"USB {label} is not set.")
    try:
        parsed = int(s, 16)
    except ValueError:
        raise ConfigurationError(f"USB {label} is not a hex value: {s!r}") from None
    if not 0 <= parsed <= 0xFFFF:
        raise ConfigurationError(f"USB {label} is out of the 16-bit range: {s!r}")
    return parsed


def bind_rfcomm(address: str, channel: int = 1) -> Dict[str, Any]:
    """
    Bind RFCOMM slot 0 to address/channel, releasing any previous binding first.

    Safe to call repeatedly with the same arguments. Raises ConfigurationError
    when address is empty and TransportError when the rfcomm tool fails.
    """
    if not address:
        raise ConfigurationError("Bluetooth address is not set.")
    ch = int(channel or 1)
    try:
        subprocess.run(["rfcomm", "release", RFCOMM_SLOT], check=False, capture_output=True, text=True)
        subprocess.run(
            ["rfcomm", "bind", RFCOMM_SLOT, address, str(ch)],
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise TransportError("rfcomm tool not found; install bluez utilities.") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or "").strip() or f"exit status {e.returncode}"
        raise TransportError(f"rfcomm bind {RFCOMM_SLOT} {address} {ch} failed: {detail}") from e
    logger.info("RFCOMM bound %s channel %d -> %s", address, ch, RFCOMM_DEVICE)
    return {"address": address, "channel": ch, "device": RFCOMM_DEVICE}


class PrinterTransport:
    """
    Base transport. Subclasses validate their parameters in __init__ and build
    the python-escpos printer in _make_printer().
    """

    driver = ""

    def __init__(self, config: PrinterConfig):
        self.config = config
        self._printer: Any = None

    def _make_printer(self) -> Any:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return self._printer is not None

    @property
    def printer(self) -> Any:
        if self._printer is None:
            raise TransportError(f"{self.driver} printer is not open")
        return self._printer

    def open(self) -> None:
        if self._printer is not None:
            return
        printer = self._make_printer()
        # Keep the handle even if open() fails partway so close() can release it.
        self._printer = printer
        try:
            printer.open()
        except BridgeError:
            raise
        except Exception as e:
            raise TransportError(f"Cannot open {self.driver} printer: {e}") from e
        logger.info("Opened %s printer", self.driver)

    def write(self, data: bytes) -> None:
        try:
            self.printer._raw(data)
        except BridgeError:
            raise
        except Exception as e:
            raise TransportError(f"Write to {self.driver} printer failed: {e}") from e

    def align_center(self) -> None:
        self.printer.set(align="center")

    def image(self, img: Any) -> None:
        self.printer.image(img)

    def cut(self) -> None:
        self.printer.cut()

    def kick_drawer(self, pin: int = DRAWER_PIN) -> None:
        self.printer.cashdraw(pin)

    def close(self) -> None:
        """
        Release the device. A no-op when nothing was acquired.
        """
        printer, self._printer = self._printer, None
        if printer is None:
            return
        try:
            printer.close()
        except Exception as e:
            raise TransportError(f"Closing {self.driver} printer failed: {e}") from e
        logger.info("Closed %s printer", self.driver)


class NetworkTransport(PrinterTransport):
    driver = "network"

    def __init__(self, config: PrinterConfig):
        super().__init__(config)
        if not config.address:
            raise ConfigurationError("Network printer address is not set.")
        self.host = config.address
        self.port = NETWORK_PORT

    def _make_printer(self) -> Any:
        from escpos.printer import Network

        return Network(self.host, self.port)


class UsbTransport(PrinterTransport):
    driver = "usb"

    def __init__(self, config: PrinterConfig):
        super().__init__(config)
        if not config.usb_vendor_id or not config.usb_product_id:
            raise ConfigurationError("USB vendor id / product id are not set.")
        self.vendor_id = _parse_usb_id("vendor id", config.usb_vendor_id)
        self.product_id = _parse_usb_id("product id", config.usb_product_id)

    def _make_printer(self) -> Any:
        from escpos.printer import Usb

        logger.info("Using USB printer %04x:%04x", self.vendor_id, self.product_id)
        return Usb(self.vendor_id, self.product_id)


class BluetoothTransport(PrinterTransport):
    driver = "bluetooth"

    def __init__(self, config: PrinterConfig):
        super().__init__(config)
        if not config.bluetooth_address:
            raise ConfigurationError("Bluetooth address is not set.")
        self.address = config.bluetooth_address
        self.channel = int(config.bluetooth_channel or 1)

    def bind_command(self) -> str:
        return f"sudo rfcomm bind {RFCOMM_SLOT} {self.address} {self.channel}"

    def _make_printer(self) -> Any:
        try:
            bind_rfcomm(self.address, self.channel)
        except TransportError as e:
            # Best effort: the device may already be bound by the operator.
            logger.warning("RFCOMM bind failed, make sure rfcomm is available: %s", e)

        if not os.path.exists(RFCOMM_DEVICE):
            raise TransportError(f"RFCOMM device {RFCOMM_DEVICE} is not available. Run: {self.bind_command()}")

        from escpos.printer import Serial

        logger.info("Using serial %s (RFCOMM)", RFCOMM_DEVICE)
        return Serial(devfile=RFCOMM_DEVICE, baudrate=SERIAL_BAUDRATE)


TRANSPORTS: Dict[str, Type[PrinterTransport]] = {
    "network": NetworkTransport,
    "usb": UsbTransport,
    "bluetooth": BluetoothTransport,
}


def create_transport(config: PrinterConfig) -> PrinterTransport:
    """
    Build the transport for config.driver. Raises ConfigurationError for an
    unknown driver or missing/invalid parameters; no device is touched.
    """
    driver = (config.driver or "").lower()
    cls = TRANSPORTS.get(driver)
    if cls is None:
        raise ConfigurationError(f"Unknown printer driver: {config.driver!r}")
    logger.debug("create_transport -> driver selected: %s", driver)
    return cls(config)


@contextmanager
def printer_session(config: PrinterConfig) -> Iterator[PrinterTransport]:
    """
    Open a transport for the duration of the block and always close it.

    Errors raised inside the block that are not BridgeErrors (escpos, OS,
    Pillow) are re-raised as TransportError. A close failure after a
    successful block fails the session; after a failed block it is only logged.
    """
    transport = create_transport(config)
    with DEVICE_LOCK:
        try:
            transport.open()
            yield transport
        except Exception as e:
            try:
                transport.close()
            except TransportError as close_err:
                logger.warning("Ignoring close failure after error: %s", close_err)
            if isinstance(e, BridgeError):
                raise
            raise TransportError(str(e) or type(e).__name__) from e
        except BaseException:
            try:
                transport.close()
            except TransportError:
                pass
            raise
        else:
            transport.close()


__all__ = [
    "DEVICE_LOCK",
    "NETWORK_PORT",
    "RFCOMM_DEVICE",
    "BluetoothTransport",
    "NetworkTransport",
    "PrinterTransport",
    "TRANSPORTS",
    "UsbTransport",
    "bind_rfcomm",
    "create_transport",
    "printer_session",
]
