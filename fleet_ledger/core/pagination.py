"""Page/size handling for list endpoints, capped by ``FLEET_MAX_PAGE_SIZE``."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass

from fastapi import Response


DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class Page:
    number: int
    size: int

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size

    def total_pages(self, total: int) -> int:
        return max(1, math.ceil(total / self.size))


def max_page_size() -> int:
    try:
        val = int(os.getenv("FLEET_MAX_PAGE_SIZE", str(DEFAULT_MAX_PAGE_SIZE)))
    except ValueError:
        return DEFAULT_MAX_PAGE_SIZE
    return val if val >= 1 else DEFAULT_MAX_PAGE_SIZE


def resolve_page(page: int, page_size: int) -> Page:
    return Page(number=max(1, page), size=max(1, min(page_size, max_page_size())))


def set_pagination_headers(response: Response, page: Page, total: int) -> None:
    response.headers["X-Total-Count"] = str(total)
    response.headers["X-Page"] = str(page.number)
    response.headers["X-Page-Size"] = str(page.size)
    response.headers["X-Total-Pages"] = str(page.total_pages(total))
