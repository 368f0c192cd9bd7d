#!/usr/bin/env python3
"""
Receipt Bridge - local print service between a POS and a receipt printer.
Runs on the till (or a Raspberry Pi next to it) with network, USB or
Bluetooth thermal printers.
"""

import os

from receipt_bridge import create_app
from receipt_bridge.core.config import DEFAULT_PORT, resolve_config

app = create_app()


def _port() -> int:
    env = os.environ.get("RECEIPTBRIDGE_PORT")
    if env:
        return int(env)
    return int(resolve_config().get("port") or DEFAULT_PORT)


if __name__ == "__main__":
    app.run(host=os.environ.get("RECEIPTBRIDGE_HOST", "0.0.0.0"), port=_port(), threaded=True)
