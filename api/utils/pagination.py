from math import ceil
from typing import Tuple

from flask import request

from api.errors import ValidationFailed

MAX_LIMIT = 100


def parse_pagination(default_limit: int = 12) -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", str(default_limit)))
    except ValueError:
        raise ValidationFailed(
            errors=[{"field": "page", "message": "page and limit must be integers"}]
        )
    page = max(page, 1)
    limit = max(1, min(limit, MAX_LIMIT))
    return page, limit


def pagination_meta(page: int, limit: int, total: int, total_key: str = "totalResults") -> dict:
    total_pages = ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        total_key: total,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
