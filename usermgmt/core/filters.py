"""Table-driven filter compiler.

Each filterable resource declares a :class:`ResourceSpec` holding a tuple of
:class:`FieldFilter` descriptors (filter key -> target field + comparison
kind). :func:`compile_filters` turns normalized filter values into a list of
backend-agnostic predicates that are ANDed together by the store.

Predicates only ever carry values; turning them into query text is the
store's job, which binds every value as a parameter.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Union

from usermgmt.core.query_params import SortSpec
from usermgmt.core.timeutil import parse_iso_datetime, utcnow


class Op(str, enum.Enum):
    EQ = "eq"
    NE = "ne"
    IN = "in"
    ICONTAINS = "icontains"
    ISTARTSWITH = "istartswith"
    IENDSWITH = "iendswith"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


@dataclass(frozen=True)
class Predicate:
    field: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class AnyOf:
    items: tuple


@dataclass(frozen=True)
class AllOf:
    items: tuple


Node = Union[Predicate, AnyOf, AllOf]


class Kind(str, enum.Enum):
    EXACT = "exact"
    INTEGER = "integer"
    ICONTAINS = "icontains"
    BOOLEAN = "boolean"
    PRESENCE = "presence"
    NUMBER_RANGE = "number_range"
    DATE_RANGE = "date_range"
    AGE_RANGE = "age_range"
    DERIVED = "derived"


@dataclass(frozen=True)
class FieldFilter:
    """Describes one recognised filter.

    ``key`` is the query parameter; for ranges it is the lower bound and
    ``to_key`` the upper bound. ``array_key`` names the list form of the same
    filter, which wins when both are supplied. ``negate`` flips boolean and
    presence checks (``neverLoggedIn=true`` means ``last_login_at IS NULL``).
    ``derive`` builds the predicate for DERIVED filters from the raw value and
    the reference time.
    """

    key: str
    field: str = ""
    kind: Kind = Kind.EXACT
    array_key: Optional[str] = None
    to_key: Optional[str] = None
    choices: Optional[tuple[str, ...]] = None
    negate: bool = False
    derive: Optional[Callable[[str, datetime], Optional[Node]]] = None


@dataclass(frozen=True)
class ResourceSpec:
    name: str
    filters: tuple[FieldFilter, ...]
    sort_fields: Mapping[str, str]
    default_sort: SortSpec
    search_fields: tuple[str, ...] = ()

    @property
    def scalar_keys(self) -> tuple[str, ...]:
        keys = [] if not self.search_fields else ["search"]
        for item in self.filters:
            keys.append(item.key)
            if item.to_key:
                keys.append(item.to_key)
        return tuple(keys)

    @property
    def array_keys(self) -> tuple[str, ...]:
        return tuple(item.array_key for item in self.filters if item.array_key)

    def resolve_sort(self, sort: SortSpec) -> SortSpec:
        """Map an API sort field onto the store field name."""
        store_field = self.sort_fields.get(sort.field)
        if store_field is None:
            store_field = self.sort_fields[self.default_sort.field]
            return SortSpec(field=store_field, direction=self.default_sort.direction)
        return SortSpec(field=store_field, direction=sort.direction)


_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def parse_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _allowed(spec: FieldFilter, values: list[str]) -> list[str]:
    if spec.choices is None:
        return values
    return [v for v in values if v in spec.choices]


def _compile_one(spec: FieldFilter, filters: Mapping[str, Any], now: datetime) -> list[Node]:
    kind = spec.kind

    if kind in (Kind.NUMBER_RANGE, Kind.DATE_RANGE, Kind.AGE_RANGE):
        return _compile_range(spec, filters, now)

    # the list form takes precedence over the scalar form
    if spec.array_key and filters.get(spec.array_key):
        values = list(filters[spec.array_key])
        if kind == Kind.INTEGER:
            values = [v for v in (parse_int(x) for x in values) if v is not None]
        else:
            values = _allowed(spec, values)
        if not values:
            return []
        if kind == Kind.ICONTAINS:
            return [AnyOf(tuple(Predicate(spec.field, Op.ICONTAINS, v) for v in values))]
        return [Predicate(spec.field, Op.IN, tuple(values))]

    raw = filters.get(spec.key)
    if raw is None:
        return []

    if kind == Kind.EXACT:
        if not _allowed(spec, [raw]):
            return []
        return [Predicate(spec.field, Op.EQ, raw)]

    if kind == Kind.INTEGER:
        number = parse_int(raw)
        return [] if number is None else [Predicate(spec.field, Op.EQ, number)]

    if kind == Kind.ICONTAINS:
        return [Predicate(spec.field, Op.ICONTAINS, raw)]

    if kind == Kind.BOOLEAN:
        flag = parse_bool(raw)
        if flag is None:
            return []
        return [Predicate(spec.field, Op.EQ, flag != spec.negate)]

    if kind == Kind.PRESENCE:
        flag = parse_bool(raw)
        if flag is None:
            return []
        present = flag != spec.negate
        return [Predicate(spec.field, Op.NOT_NULL if present else Op.IS_NULL)]

    if kind == Kind.DERIVED and spec.derive is not None:
        node = spec.derive(raw, now)
        return [] if node is None else [node]

    return []


def _compile_range(spec: FieldFilter, filters: Mapping[str, Any], now: datetime) -> list[Node]:
    nodes: list[Node] = []
    low = filters.get(spec.key)
    high = filters.get(spec.to_key) if spec.to_key else None

    if spec.kind == Kind.NUMBER_RANGE:
        low_value = parse_int(low) if low is not None else None
        high_value = parse_int(high) if high is not None else None
    elif spec.kind == Kind.DATE_RANGE:
        low_value = parse_iso_datetime(low) if low is not None else None
        high_value = parse_iso_datetime(high, end_of_day=True) if high is not None else None
    else:
        # ageFrom/ageTo -> birth-date window, calendar-year granularity
        min_age = parse_int(low) if low is not None else None
        max_age = parse_int(high) if high is not None else None
        low_value = high_value = None
        if max_age is not None and 0 <= max_age < now.year:
            low_value = date(now.year - max_age, 1, 1)
        if min_age is not None and 0 <= min_age < now.year:
            high_value = date(now.year - min_age, 12, 31)

    if low_value is not None:
        nodes.append(Predicate(spec.field, Op.GTE, low_value))
    if high_value is not None:
        nodes.append(Predicate(spec.field, Op.LTE, high_value))
    return nodes


def search_predicate(fields: tuple[str, ...], term: Any) -> Optional[Node]:
    """OR of case-insensitive substring matches across ``fields``."""
    if not fields or not isinstance(term, str) or not term.strip():
        return None
    text = term.strip()
    return AnyOf(tuple(Predicate(name, Op.ICONTAINS, text) for name in fields))


def compile_filters(
    resource: ResourceSpec,
    filters: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> list[Node]:
    """Compile normalized filters into an AND-list of predicates.

    Keys the resource does not declare are ignored.
    """
    now = now or utcnow()
    nodes: list[Node] = []

    search = search_predicate(resource.search_fields, filters.get("search"))
    if search is not None:
        nodes.append(search)

    for spec in resource.filters:
        nodes.extend(_compile_one(spec, filters, now))
    return nodes
