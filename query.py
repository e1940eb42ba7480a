"""
List queries over in-memory records.

Each resource declares a ``QuerySpec``: which fields may be filtered and how
their query-string values are typed, which fields the ``q`` search looks at,
and its default sort. ``select`` applies filters, sorting and the limit in
that order. Keys that are not declared for the resource are ignored.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from normalizers import TRUTHY, as_number

RESERVED_KEYS = ("sort", "limit", "q")
FALSY = {"0", "false", "no", "off"}

SORT_ALIASES = {
    "price_asc": ("price", False),
    "price_desc": ("price", True),
    "-views": ("views", True),
}

_NO_MATCH = object()


class TextField:
    operators = ("eq",)

    def parse(self, raw: str):
        return str(raw)

    def matches(self, value, expected, op: str) -> bool:
        return value is not None and str(value) == expected


class NumberField:
    operators = ("eq", "gte", "lte", "gt", "lt")

    def parse(self, raw: str):
        number = as_number(raw, default=None)
        return _NO_MATCH if number is None else number

    def matches(self, value, expected, op: str) -> bool:
        value = as_number(value, default=None)
        if value is None:
            return False
        if op == "gte":
            return value >= expected
        if op == "lte":
            return value <= expected
        if op == "gt":
            return value > expected
        if op == "lt":
            return value < expected
        return value == expected


class FlagField:
    operators = ("eq",)

    def parse(self, raw: str):
        text = str(raw).strip().lower()
        if text in TRUTHY:
            return True
        if text in FALSY:
            return False
        return _NO_MATCH

    def matches(self, value, expected, op: str) -> bool:
        return bool(value) is expected


@dataclass(frozen=True)
class QuerySpec:
    fields: Dict[str, Any] = field(default_factory=dict)
    search_fields: Tuple[str, ...] = ()
    default_sort: Optional[str] = None


def _split_key(key: str) -> Tuple[str, str]:
    name, sep, op = key.partition("__")
    return (name, op) if sep else (key, "eq")


def _predicates(criteria: Mapping[str, Any], resource: QuerySpec):
    predicates = []
    for key, raw in criteria.items():
        if key in RESERVED_KEYS or raw is None or raw == "":
            continue
        name, op = _split_key(key)
        kind = resource.fields.get(name)
        if kind is None or op not in kind.operators:
            continue
        predicates.append((name, op, kind, kind.parse(raw)))
    return predicates


def _search_term(criteria: Mapping[str, Any]) -> Optional[str]:
    term = criteria.get("q")
    if term is None:
        return None
    term = str(term).strip().lower()
    return term or None


def parse_sort(sort: Optional[str]) -> Optional[Tuple[str, bool]]:
    """Return ``(field, descending)`` for a sort key, or None."""
    if not sort:
        return None
    if sort in SORT_ALIASES:
        return SORT_ALIASES[sort]
    if sort.startswith("-"):
        return sort[1:], True
    return sort, False


def parse_limit(limit) -> Optional[int]:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def sort_key(value):
    # missing values sort as 0; numbers never compare against strings
    if value is None:
        return (0, 0)
    if isinstance(value, (bool, int, float)):
        return (0, value)
    return (1, str(value))


def select(records: Iterable[Dict[str, Any]], criteria: Mapping[str, Any], resource: QuerySpec) -> List[Dict[str, Any]]:
    predicates = _predicates(criteria, resource)
    term = _search_term(criteria)

    result = []
    for record in records:
        if any(expected is _NO_MATCH or not kind.matches(record.get(name), expected, op)
               for name, op, kind, expected in predicates):
            continue
        if term and not any(term in str(record.get(f) or "").lower() for f in resource.search_fields):
            continue
        result.append(record)

    order = parse_sort(criteria.get("sort") or resource.default_sort)
    if order:
        key, descending = order
        # sorted() is stable in both directions
        result = sorted(result, key=lambda r: sort_key(r.get(key)), reverse=descending)

    limit = parse_limit(criteria.get("limit"))
    if limit:
        result = result[:limit]
    return result


PRODUCT_QUERY = QuerySpec(
    fields={
        "id": TextField(),
        "name": TextField(),
        "category_id": TextField(),
        "price": NumberField(),
        "original_price": NumberField(),
        "stock": NumberField(),
        "views": NumberField(),
        "is_new": FlagField(),
        "is_promo": FlagField(),
        "is_featured": FlagField(),
        "is_available": FlagField(),
    },
    search_fields=("name", "short_description", "description"),
)

CATEGORY_QUERY = QuerySpec(
    fields={"id": TextField(), "name": TextField(), "order": NumberField()},
    default_sort="order",
)

ORDER_QUERY = QuerySpec(
    fields={
        "id": TextField(),
        "order_number": TextField(),
        "status": TextField(),
        "client_name": TextField(),
        "client_phone": TextField(),
        "client_email": TextField(),
        "total": NumberField(),
    },
    search_fields=("order_number", "client_name", "client_phone"),
    default_sort="-created_date",
)

SETTINGS_QUERY = QuerySpec()
