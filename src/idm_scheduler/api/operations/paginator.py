"""Cursor pagination over ``link: <...>; rel="next"`` headers."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Callable
from typing import Any
from urllib.parse import urlencode, urlsplit

from idm_scheduler.config import PaginationConfig, get_settings
from idm_scheduler.logging import get_logger

from ..exceptions import PaginationError, SchedulerError
from ..scheduling import ApiScheduler, RequestPriority

logger = get_logger(__name__)

_LINK_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?([^";]+)"?')

ProgressHook = Callable[[int, int], None]


def parse_next_link(link_header: str | None) -> str | None:
    """Extract the ``rel="next"`` target as path + query.

    Args:
        link_header: Raw ``link`` header value

    Returns:
        Relative URL of the next page, or None if there is none
    """
    if not link_header:
        return None
    for part in link_header.split(","):
        match = _LINK_RE.search(part)
        if match and "next" in match.group(2).split():
            url = urlsplit(match.group(1).strip())
            return f"{url.path}?{url.query}" if url.query else url.path
    return None


def with_page_size(endpoint: str, page_size: int) -> str:
    """Add ``limit=<page_size>`` unless the endpoint already sets one."""
    if "limit=" in urlsplit(endpoint).query:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode({'limit': page_size})}"


class CursorPaginator:
    """Loads a whole collection through the scheduler.

    Usage:
        paginator = CursorPaginator(scheduler, origin="members-view")
        members = await paginator.fetch_all(
            "/api/v1/groups/00g1/users",
            on_progress=lambda loaded, page: print(loaded, page),
        )
    """

    def __init__(
        self,
        scheduler: ApiScheduler,
        *,
        config: PaginationConfig | None = None,
        priority: RequestPriority = RequestPriority.NORMAL,
        origin: str = "paginator",
    ) -> None:
        self._scheduler = scheduler
        self._config = config or get_settings().pagination
        self._priority = priority
        self._origin = origin

    async def iter_pages(self, endpoint: str) -> AsyncIterator[list[Any]]:
        """Yield each page's items in server order.

        Raises:
            PaginationError: If a page fails, is not a list, or the
                server repeats a cursor or exceeds the page limit
        """
        next_url: str | None = with_page_size(endpoint, self._config.page_size)
        seen: set[str] = set()
        page_number = 0

        while next_url:
            page_number += 1
            if page_number > self._config.max_pages:
                raise PaginationError(
                    f"Exceeded {self._config.max_pages} pages for {endpoint}",
                    page_number=page_number,
                )
            seen.add(next_url)

            try:
                response = await self._scheduler.submit(
                    next_url,
                    priority=self._priority,
                    origin=self._origin,
                )
            except SchedulerError as e:
                raise PaginationError(
                    f"Failed to load page {page_number} of {endpoint}: {e}",
                    page_number=page_number,
                    status=e.status,
                ) from e

            if response.data is None:
                items: list[Any] = []
            elif isinstance(response.data, list):
                items = response.data
            else:
                raise PaginationError(
                    f"Page {page_number} of {endpoint} is not a list",
                    page_number=page_number,
                    status=response.status,
                )

            next_url = parse_next_link(response.headers.get("link"))
            if next_url is not None and next_url in seen:
                raise PaginationError(
                    f"Server repeated cursor {next_url}",
                    page_number=page_number,
                )
            yield items

    async def fetch_all(
        self,
        endpoint: str,
        on_progress: ProgressHook | None = None,
    ) -> list[Any]:
        """Load every page and return all items.

        Args:
            endpoint: Collection endpoint
            on_progress: Called with (loaded_count, page_number) after each page

        Returns:
            All items in server order; never a partial list
        """
        items: list[Any] = []
        page_number = 0
        async for page in self.iter_pages(endpoint):
            page_number += 1
            items.extend(page)
            if on_progress is not None:
                on_progress(len(items), page_number)

        logger.info("Loaded {} items from {} in {} pages", len(items), endpoint, page_number)
        return items
