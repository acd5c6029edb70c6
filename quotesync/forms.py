"""Validation for quote-creation payloads."""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone

from .errors import ValidationError
from .models import QuoteFormData, QuoteStatus

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?\d+(\.\d+)?$")
VALID_FOR_DAYS = 30

REQUIRED_CUSTOMER_FIELDS = {
    "name": "Name is required",
    "address": "Address is required",
    "city": "City is required",
    "country": "Country is required",
}


def _is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value))
    except (TypeError, ValueError, OverflowError):
        return False
    return math.isfinite(number)


def validate_quote_form(data: dict) -> QuoteFormData:
    """Check a raw quote payload and return it with totals recomputed.

    Raises ``ValidationError`` listing every failing field, keyed by its dotted
    path (``customer_info.email``, ``items.0.quantity``).
    """
    if not isinstance(data, dict):
        raise ValidationError("Quote payload must be an object")

    errors: dict[str, str] = {}
    customer = data.get("customer_info") or {}
    if not isinstance(customer, dict):
        customer = {}

    for name, msg in REQUIRED_CUSTOMER_FIELDS.items():
        if not str(customer.get(name) or "").strip():
            errors[f"customer_info.{name}"] = msg

    email = str(customer.get("email") or "").strip()
    if not email:
        errors["customer_info.email"] = "Email is required"
    elif not EMAIL_RE.match(email):
        errors["customer_info.email"] = "Invalid email"

    phone = str(customer.get("phone") or "").strip()
    if not phone:
        errors["customer_info.phone"] = "Phone is required"
    elif not PHONE_RE.match(phone):
        errors["customer_info.phone"] = "Invalid phone"

    status = str(data.get("status") or "").strip()
    if not status:
        errors["status"] = "Status is required"
    elif status not in QuoteStatus.__members__:
        errors["status"] = f"Unknown status {status}"

    items = data.get("items")
    if not isinstance(items, list) or not items:
        errors["items"] = "At least one item is required"
    else:
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                errors[f"items.{idx}"] = "Item must be an object"
                continue
            if not str(item.get("product_name") or "").strip():
                errors[f"items.{idx}.product_name"] = "Product name is required"
            if item.get("price") is None or not _is_number(item.get("price")):
                errors[f"items.{idx}.price"] = "Price is required"
            qty = item.get("quantity")
            if qty is None or not _is_number(qty):
                errors[f"items.{idx}.quantity"] = "Quantity is required"
            elif float(qty) < 1:
                errors[f"items.{idx}.quantity"] = "Must be at least 1"
            elif not float(qty).is_integer():
                errors[f"items.{idx}.quantity"] = "Must be a whole number"

    if errors:
        raise ValidationError("Invalid quote", errors)

    payload = dict(data)
    if not payload.get("valid_until"):
        until = datetime.now(timezone.utc) + timedelta(days=VALID_FOR_DAYS)
        payload["valid_until"] = until.isoformat().replace("+00:00", "Z")
    return QuoteFormData.from_dict(payload).with_totals()
