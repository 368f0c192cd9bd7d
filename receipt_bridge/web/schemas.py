from __future__ import annotations

"""
Pydantic schemas for the Receipt Bridge API (v1).

Receipt payloads are validated for structure only: every field is optional
and amounts are accepted as strings or numbers and printed verbatim. Unknown
keys are preserved so newer POS clients can send extra data without breaking
older bridges.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from receipt_bridge.core.config import DRIVERS, normalize_driver

Scalar = Optional[Union[str, int, float]]


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow")


class Header(_Section):
    title: Scalar = None
    address: Scalar = None
    phone: Scalar = None


class Meta(_Section):
    invoice: Scalar = None
    date: Scalar = None
    cashier: Scalar = None
    payment_method: Scalar = None


class Item(_Section):
    name: Scalar = None
    qty: Scalar = None
    price: Scalar = None
    subtotal: Scalar = None


class Totals(_Section):
    subtotal: Scalar = None
    discount: Scalar = None
    total: Scalar = None
    paid: Scalar = None
    change: Scalar = None


class Footer(_Section):
    thanks: Scalar = None
    note: Scalar = None


class ReceiptPayload(_Section):
    header: Optional[Header] = None
    meta: Optional[Meta] = None
    items: Optional[List[Item]] = Field(default=None, max_length=500)
    totals: Optional[Totals] = None
    footer: Optional[Footer] = None

    def to_job_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PrintRequest(BaseModel):
    """Body of POST /api/v1/print."""

    model_config = ConfigDict(populate_by_name=True)

    payload: ReceiptPayload = Field(default_factory=ReceiptPayload)
    request_id: Optional[str] = Field(default=None, alias="requestId", max_length=128)
    wait: Optional[float] = Field(
        default=None,
        ge=0,
        le=30,
        description="Seconds to hold the response open for the print result",
    )


class ConfigUpdate(BaseModel):
    """
    Partial printer config update (POST /api/v1/config).

    Nested "printer"/"usb" shapes and camelCase aliases are accepted as extra
    keys and resolved by core.config.merge_config().
    """

    model_config = ConfigDict(extra="allow")

    port: Optional[int] = Field(default=None, ge=1, le=65535)
    driver: Optional[str] = None
    address: Optional[str] = Field(default=None, max_length=255)
    encoding: Optional[str] = Field(default=None, max_length=40)
    usb_vendor_id: Optional[str] = None
    usb_product_id: Optional[str] = None
    bluetooth_address: Optional[str] = Field(default=None, max_length=32)
    bluetooth_channel: Optional[int] = Field(default=None, ge=1, le=30)

    @field_validator("driver")
    @classmethod
    def _known_driver(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        d = normalize_driver(v)
        if d not in DRIVERS:
            raise ValueError(f"driver must be one of {', '.join(DRIVERS)}")
        return d

    @field_validator("usb_vendor_id", "usb_product_id")
    @classmethod
    def _hex_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return v
        try:
            value = int(v.strip(), 16)
        except ValueError:
            raise ValueError("must be a hex value like 04b8") from None
        if not 0 <= value <= 0xFFFF:
            raise ValueError("must fit in 16 bits")
        return v.strip()

    def to_update(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


__all__ = ["ConfigUpdate", "Footer", "Header", "Item", "Meta", "PrintRequest", "ReceiptPayload", "Totals"]
