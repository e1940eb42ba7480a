"""Order totals. Amounts are FCFA; no tax or discounts apply."""
from typing import Any, Dict, Iterable, Mapping

from normalizers import as_number


def line_total(item: Mapping[str, Any]):
    return as_number(item.get("price")) * as_number(item.get("quantity"))


def compute_totals(items: Iterable[Mapping[str, Any]], delivery_fee=0) -> Dict[str, Any]:
    subtotal = sum(line_total(item) for item in items)
    return {"subtotal": subtotal, "total": subtotal + as_number(delivery_fee)}
