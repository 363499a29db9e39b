"""Query parameter normalization: pagination, sort and filter extraction.

Raw request parameters arrive as a mapping of name to a string or a list of
strings (repeated keys). Everything here is a pure parse: malformed input
falls back to defaults or is dropped, it never raises.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from starlette.datastructures import QueryParams

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MIN_LIMIT = 1
MAX_LIMIT = 100

ASC = "asc"
DESC = "desc"

RawParams = Mapping[str, Union[str, list[str]]]


@dataclass(frozen=True)
class Pagination:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: str = DESC


@dataclass(frozen=True)
class NormalizedQuery:
    pagination: Pagination
    sort: SortSpec
    filters: dict[str, Any] = field(default_factory=dict)


def params_from_request(query_params: QueryParams) -> dict[str, Union[str, list[str]]]:
    """Flatten Starlette query params, keeping repeated keys as lists."""
    collected: dict[str, Union[str, list[str]]] = {}
    for key, value in query_params.multi_items():
        if key in collected:
            existing = collected[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                collected[key] = [existing, value]
        else:
            collected[key] = value
    return collected


def _first(value: Union[str, list[str], None]) -> Optional[str]:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def normalize_pagination(params: RawParams) -> Pagination:
    """Extract page/limit; out-of-range limits are clamped, junk falls back to defaults."""
    page = _to_int(_first(params.get("page")))
    limit = _to_int(_first(params.get("limit")))

    if page is None or page < 1:
        page = DEFAULT_PAGE
    if limit is None:
        limit = DEFAULT_LIMIT
    limit = max(MIN_LIMIT, min(MAX_LIMIT, limit))
    return Pagination(page=page, limit=limit)


def normalize_sort(params: RawParams, allowed: Iterable[str], default: SortSpec) -> SortSpec:
    """Extract sortBy/sortOrder, falling back to ``default`` for unknown fields."""
    field_name = _first(params.get("sortBy"))
    if not field_name or field_name not in set(allowed):
        return default
    order = (_first(params.get("sortOrder")) or "").strip().lower()
    direction = order if order in (ASC, DESC) else default.direction
    return SortSpec(field=field_name, direction=direction)


def _as_list(value: Union[str, list[str], None]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        raw = value
    else:
        raw = [value]
    if len(raw) == 1 and raw[0].strip().startswith("["):
        try:
            decoded = json.loads(raw[0])
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            raw = [str(item) for item in decoded if item is not None]
    return [item.strip() for item in raw if isinstance(item, str) and item.strip()]


def normalize_filters(
    params: RawParams,
    scalar_keys: Iterable[str],
    array_keys: Iterable[str] = (),
) -> dict[str, Any]:
    """Keep only recognised filter keys.

    Scalar keys keep their first non-empty value. Array keys are collected from
    ``key`` and ``key[]`` (repeated or JSON-encoded) into a list.
    """
    filters: dict[str, Any] = {}

    for key in scalar_keys:
        value = _first(params.get(key))
        if value is not None and str(value).strip() != "":
            filters[key] = str(value).strip()

    for key in array_keys:
        values = _as_list(params.get(key)) + _as_list(params.get(f"{key}[]"))
        if values:
            filters[key] = values

    return filters


def normalize_query(params: RawParams, resource) -> NormalizedQuery:
    """Normalize pagination, sort and filters for a resource descriptor."""
    return NormalizedQuery(
        pagination=normalize_pagination(params),
        sort=normalize_sort(params, resource.sort_fields.keys(), resource.default_sort),
        filters=normalize_filters(params, resource.scalar_keys, resource.array_keys),
    )
