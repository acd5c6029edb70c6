"""Quote, product and pending-write records exchanged with the backend."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

TAX_RATE = Decimal("0.15")
LOCAL_QUOTE_LABEL = "Local Quote"

CENT = Decimal("0.01")


def round2(value) -> float:
    """Round to cents, half away from zero."""
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    q = d.copy_abs().quantize(CENT, rounding=ROUND_HALF_UP)
    return float(q.copy_sign(d))


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse the backend's timestamps (``2024-01-14 12:00:00.000Z`` or ISO)."""
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        try:
            ts = datetime.fromisoformat(text.replace(" ", "T", 1))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class QuoteStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    SENT = "SENT"
    DRAFT = "DRAFT"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class CustomerInfo:
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "CustomerInfo":
        data = data or {}
        return cls(**{k: str(data.get(k) or "") for k in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, str]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass(frozen=True)
class QuoteItem:
    product_name: str
    price: float
    quantity: int
    subtotal: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteItem":
        return cls(
            product_name=str(data.get("product_name") or ""),
            price=float(data.get("price") or 0),
            quantity=int(data.get("quantity") or 0),
            subtotal=float(data.get("subtotal") or 0),
        )

    def with_subtotal(self) -> "QuoteItem":
        return replace(
            self, subtotal=round2(Decimal(str(self.price)) * self.quantity)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_name": self.product_name,
            "price": self.price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class Totals:
    subtotal: float
    total_tax: float
    total: float


def compute_totals(items: list[QuoteItem]) -> Totals:
    """Subtotal of the line items plus 15% tax.

    Each line's subtotal is price * quantity; tax and total are rounded to
    cents independently from the unrounded subtotal.
    """
    sub = sum(
        (Decimal(str(i.price)) * i.quantity for i in items), Decimal("0")
    )
    tax = sub * TAX_RATE
    return Totals(subtotal=round2(sub), total_tax=round2(tax), total=round2(sub + tax))


@dataclass(frozen=True)
class QuoteFormData:
    """Payload of a quote-creation request."""

    customer_info: CustomerInfo
    status: str
    items: list[QuoteItem]
    valid_until: str
    description: str = ""
    subtotal: float = 0.0
    total_tax: float = 0.0
    total: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteFormData":
        return cls(
            customer_info=CustomerInfo.from_dict(data.get("customer_info")),
            status=str(data.get("status") or ""),
            items=[QuoteItem.from_dict(i) for i in data.get("items") or []],
            valid_until=str(data.get("valid_until") or ""),
            description=str(data.get("description") or ""),
            subtotal=float(data.get("subtotal") or 0),
            total_tax=float(data.get("total_tax") or 0),
            total=float(data.get("total") or 0),
        )

    def with_totals(self) -> "QuoteFormData":
        items = [i.with_subtotal() for i in self.items]
        t = compute_totals(items)
        return replace(
            self, items=items, subtotal=t.subtotal, total_tax=t.total_tax, total=t.total
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer_info": self.customer_info.to_dict(),
            "description": self.description,
            "status": self.status,
            "items": [i.to_dict() for i in self.items],
            "subtotal": self.subtotal,
            "total": self.total,
            "total_tax": self.total_tax,
            "valid_until": self.valid_until,
        }


@dataclass(frozen=True)
class Quote:
    """A quote as listed or returned by the backend.

    ``id`` is None for a quote that only exists in the pending queue.
    """

    id: str | None
    status: str
    total: float
    customer_info: CustomerInfo
    created: str | None = None
    updated: str | None = None
    description: str = ""
    items: list[QuoteItem] = field(default_factory=list)
    subtotal: float = 0.0
    total_tax: float = 0.0
    valid_until: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Quote":
        return cls(
            id=data.get("id") or None,
            status=str(data.get("status") or ""),
            total=float(data.get("total") or 0),
            customer_info=CustomerInfo.from_dict(data.get("customer_info")),
            created=data.get("created"),
            updated=data.get("updated"),
            description=str(data.get("description") or ""),
            items=[QuoteItem.from_dict(i) for i in data.get("items") or []],
            subtotal=float(data.get("subtotal") or 0),
            total_tax=float(data.get("total_tax") or 0),
            valid_until=data.get("valid_until"),
        )

    @property
    def pending(self) -> bool:
        return self.id is None

    @property
    def label(self) -> str:
        return self.id or LOCAL_QUOTE_LABEL

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status,
            "total": self.total,
            "subtotal": self.subtotal,
            "total_tax": self.total_tax,
            "customer_info": self.customer_info.to_dict(),
            "description": self.description,
            "items": [i.to_dict() for i in self.items],
            "created": self.created,
            "updated": self.updated,
            "valid_until": self.valid_until,
        }


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    price: float

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            price=float(data.get("price") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "price": self.price}


QUOTE_CREATE = "quote.create"
ENVELOPE_VERSION = 1


@dataclass(frozen=True)
class PendingWrite:
    """A queued write, stored as a tagged, versioned envelope."""

    payload: dict
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    kind: str = QUOTE_CREATE
    version: int = ENVELOPE_VERSION
    queued_at: str = field(default_factory=utcnow_iso)
    attempts: int = 0
    last_attempt_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PendingWrite":
        return cls(
            payload=dict(data["payload"]),
            id=str(data["id"]),
            kind=str(data.get("kind", QUOTE_CREATE)),
            version=int(data.get("version", ENVELOPE_VERSION)),
            queued_at=str(data.get("queued_at") or utcnow_iso()),
            attempts=int(data.get("attempts", 0)),
            last_attempt_at=data.get("last_attempt_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "version": self.version,
            "queued_at": self.queued_at,
            "attempts": self.attempts,
            "last_attempt_at": self.last_attempt_at,
            "payload": self.payload,
        }

    def failed_attempt(self) -> "PendingWrite":
        return replace(self, attempts=self.attempts + 1, last_attempt_at=utcnow_iso())

    def as_quote(self) -> Quote:
        """Display form of a pending write; ``created`` is the queue time."""
        q = Quote.from_dict(self.payload)
        return replace(q, id=None, created=q.created or self.queued_at)
