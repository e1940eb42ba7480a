"""
Record normalizers.

Stored records arrive in whatever shape the backend keeps them: numeric
strings, 0/1 booleans, JSON-encoded arrays. Each ``normalize_*`` function
turns one raw record into its canonical typed form and never raises on
malformed values; every field falls back to a documented default instead.
All functions are idempotent.
"""
import json
import logging
import math
from decimal import Decimal
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}
INTERNAL_KEYS = ("_id",)


def parse_or_default(value: Any, parser: Callable[[Any], Any], default: Callable[[], Any]):
    """Return ``parser(value)``, or ``default()`` if parsing fails."""
    try:
        return parser(value)
    except (TypeError, ValueError) as e:
        logger.debug("Falling back to default for %r: %s", value, e)
        return default()


def _number(value):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        value = float(value)
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("not a finite number")
    return int(number) if number.is_integer() else number


def _json_list(value) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, (str, bytes)):
        decoded = json.loads(value)
        if isinstance(decoded, list):
            return decoded
    raise ValueError("not a JSON array")


def as_number(value: Any, default=0):
    return parse_or_default(value, _number, lambda: default)


def as_flag(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


def as_json_list(value: Any) -> List[Any]:
    """Decode a list or JSON-encoded array; anything else becomes ``[]``."""
    if value is None:
        return []
    return parse_or_default(value, _json_list, list)


def _base(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in raw.items() if k not in INTERNAL_KEYS}


def normalize_product(raw: Dict[str, Any]) -> Dict[str, Any]:
    doc = _base(raw)
    for field in ("price", "original_price", "stock", "views"):
        doc[field] = as_number(raw.get(field))
    for field in ("is_new", "is_promo", "is_featured"):
        doc[field] = as_flag(raw.get(field))
    doc["is_available"] = as_flag(raw.get("is_available"), default=True)
    doc["images"] = [str(url) for url in as_json_list(raw.get("images")) if url is not None]
    return doc


def normalize_category(raw: Dict[str, Any]) -> Dict[str, Any]:
    doc = _base(raw)
    # the relational backend keeps the rank in order_index
    order = raw.get("order", raw.get("order_index"))
    doc.pop("order_index", None)
    doc["order"] = as_number(order)
    return doc


def normalize_line_item(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return {"quantity": 0, "price": 0, "total": 0}
    item = dict(raw)
    for field in ("quantity", "price", "total"):
        item[field] = as_number(raw.get(field))
    return item


def normalize_order(raw: Dict[str, Any]) -> Dict[str, Any]:
    doc = _base(raw)
    for field in ("subtotal", "delivery_fee", "total"):
        doc[field] = as_number(raw.get(field))
    doc["items"] = [normalize_line_item(item) for item in as_json_list(raw.get("items"))]
    doc["status"] = raw.get("status") or "pending"
    return doc


def normalize_settings(raw: Dict[str, Any]) -> Dict[str, Any]:
    doc = _base(raw)
    doc["delivery_fee"] = as_number(raw.get("delivery_fee"))
    doc["free_delivery_threshold"] = as_number(raw.get("free_delivery_threshold"))
    return doc


def normalize_user(raw: Dict[str, Any]) -> Dict[str, Any]:
    return _base(raw)
