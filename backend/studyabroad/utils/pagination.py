"""Pagination helpers shared by the list endpoints."""

import math


def pagination_block(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "total_count": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
