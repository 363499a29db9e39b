"""Paginated result envelope."""

import math
from typing import Any, Sequence

from usermgmt.core.query_params import Pagination


def assemble(rows: Sequence[Any], total: int, pagination: Pagination) -> dict:
    """Wrap one page of rows with page metadata.

    ``totalPages`` is 0 for an empty result, in which case both
    ``hasNext`` and ``hasPrev`` are false.
    """
    total = max(0, int(total))
    total_pages = math.ceil(total / pagination.limit) if total else 0
    return {
        "data": list(rows),
        "pagination": {
            "page": pagination.page,
            "limit": pagination.limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": pagination.page < total_pages,
            "hasPrev": pagination.page > 1 and total_pages > 0,
        },
    }
