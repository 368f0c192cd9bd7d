"""
Receipt text formatting for Receipt Bridge.

format_receipt_lines() turns a POS receipt payload into the ordered lines
printed below the logo. It is total: any mapping produces output, and
missing or malformed fields fall back to placeholders ("-" for text, "0" for
money). Amounts are printed exactly as the POS sent them.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, List

DIVIDER = "-" * 32
DEFAULT_TITLE = "HADE STORE"
DEFAULT_THANKS = "Terima kasih!"
TEXT_PLACEHOLDER = "-"
MONEY_PLACEHOLDER = "0"


def _section(payload: Any, key: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        return {}
    value = payload.get(key)
    return value if isinstance(value, Mapping) else {}


def _text(section: Mapping[str, Any], key: str, default: str = TEXT_PLACEHOLDER) -> str:
    value = section.get(key)
    if value is None or value == "":
        return default
    return str(value)


def _items(payload: Any) -> List[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        return []
    items = payload.get("items")
    if not isinstance(items, (list, tuple)):
        return []
    return [it for it in items if isinstance(it, Mapping)]


def format_receipt_lines(payload: Any) -> List[str]:
    """
    Render a receipt payload into printable lines.

    Layout:
        title / address / Telp
        ---
        No / Tgl / Kasir
        ---
        <name>
        <qty> x <price> = <subtotal>      (per item, payload order)
        ---
        Subtotal / Diskon (only when set) / TOTAL / Bayar (<method>) / Kembali
        ---
        thanks / note
    """
    header = _section(payload, "header")
    meta = _section(payload, "meta")
    totals = _section(payload, "totals")
    footer = _section(payload, "footer")

    lines: List[str] = [_text(header, "title", DEFAULT_TITLE)]
    if header.get("address"):
        lines.append(str(header["address"]))
    if header.get("phone"):
        lines.append(f"Telp: {header['phone']}")
    lines.append(DIVIDER)

    lines.append(f"No: {_text(meta, 'invoice')}")
    lines.append(f"Tgl: {_text(meta, 'date')}")
    lines.append(f"Kasir: {_text(meta, 'cashier')}")
    lines.append(DIVIDER)

    for item in _items(payload):
        lines.append(_text(item, "name"))
        lines.append(
            f"{_text(item, 'qty')} x {_text(item, 'price', MONEY_PLACEHOLDER)} = "
            f"{_text(item, 'subtotal', MONEY_PLACEHOLDER)}"
        )
    lines.append(DIVIDER)

    lines.append(f"Subtotal : {_text(totals, 'subtotal', MONEY_PLACEHOLDER)}")
    if totals.get("discount"):
        lines.append(f"Diskon   : -{totals['discount']}")
    lines.append(f"TOTAL    : {_text(totals, 'total', MONEY_PLACEHOLDER)}")
    lines.append(f"Bayar ({_text(meta, 'payment_method')}) : {_text(totals, 'paid', MONEY_PLACEHOLDER)}")
    lines.append(f"Kembali  : {_text(totals, 'change', MONEY_PLACEHOLDER)}")
    lines.append(DIVIDER)

    lines.append(_text(footer, "thanks", DEFAULT_THANKS))
    if footer.get("note"):
        lines.append(str(footer["note"]))
    return lines


def format_receipt(payload: Any) -> str:
    return "\n".join(format_receipt_lines(payload))


def make_test_payload(now: datetime | None = None) -> dict[str, Any]:
    """
    Receipt used by the operator "test print" action.
    """
    now = now or datetime.now()
    return {
        "header": {"title": "HaDe Test Printer", "address": "Bandung", "phone": "0896-000-PRINT"},
        "meta": {
            "invoice": f"TEST-{int(now.timestamp() * 1000)}",
            "date": now.strftime("%Y-%m-%d %H:%M:%S"),
            "cashier": "Kasir",
            "payment_method": "test",
        },
        "items": [{"name": "Produk Uji", "qty": "1 pcs", "price": "Rp 0", "subtotal": "Rp 0"}],
        "totals": {"subtotal": "Rp 0", "total": "Rp 0", "paid": "Rp 0", "change": "Rp 0"},
        "footer": {"thanks": "Tes cetak via bridge."},
    }


__all__ = [
    "DEFAULT_THANKS",
    "DEFAULT_TITLE",
    "DIVIDER",
    "format_receipt",
    "format_receipt_lines",
    "make_test_payload",
]
