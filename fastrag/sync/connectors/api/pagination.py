"""
Pagination Engine.

Drives the page loop of an API source: builds the pagination parameters of
each request and derives the next PaginationState from the response.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from fastrag.sync.connectors.base import FetchOutcome
from fastrag.sync.connectors.normalizer import NormalizedPage
from fastrag.sync.connectors.rate_limiter import SlidingWindowRateLimiter
from fastrag.sync.models import PaginationConfig, PaginationState, PaginationType

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 100
CURSOR_RESPONSE_FIELDS = ("next_cursor", "nextCursor", "cursor")


def format_since(value: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class PaginationEngine:
    """
    Offset, cursor and page-number pagination under a request cap.

    When a response lacks exact position fields the engine assumes more data
    exists whenever a full batch came back. That heuristic issues one extra
    request when the last page is exactly batch-sized.
    """

    def __init__(
        self,
        pagination: Optional[PaginationConfig],
        batch_size: int,
        since_param: str = "since",
        max_requests: int = DEFAULT_MAX_REQUESTS,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None
    ):
        self.pagination = pagination
        self.batch_size = batch_size
        self.since_param = since_param
        self.max_requests = max_requests
        self._log = log or logger

    def build_params(
        self,
        state: PaginationState,
        since: Optional[datetime] = None,
        base_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Query parameters for the next request."""
        params = dict(base_params or {})
        pagination = self.pagination

        if pagination:
            params[pagination.limit_param] = self.batch_size

            if pagination.type == PaginationType.OFFSET:
                if state.next_offset is not None:
                    params[pagination.offset_param] = state.next_offset
            elif pagination.type == PaginationType.CURSOR:
                if state.next_cursor:
                    params[pagination.cursor_param] = state.next_cursor
            elif pagination.type == PaginationType.PAGE:
                if state.next_page is not None:
                    params[pagination.page_param] = state.next_page

        if since:
            params[self.since_param] = format_since(since)

        return params

    def advance(self, state: PaginationState, payload: Any, item_count: int) -> PaginationState:
        """
        Derive the state for the next request.

        Args:
            state: State used for the request that produced payload
            payload: Raw response body
            item_count: Number of raw items in the response
        """
        if not self.pagination:
            return PaginationState(has_more=False)

        data = payload if isinstance(payload, dict) else {}
        full_batch = item_count > 0 and item_count >= self.batch_size

        if self.pagination.type == PaginationType.OFFSET:
            total = _as_int(data.get("total"))
            offset = _as_int(data.get("offset"))

            if total is not None and offset is not None:
                limit = _as_int(data.get("limit"))
                step = limit if limit and limit > 0 else item_count
                next_offset = offset + step
                return PaginationState(
                    has_more=step > 0 and next_offset < total,
                    next_offset=next_offset
                )

            # Fallback: assume more data if we got a full batch
            current = offset if offset is not None else (state.next_offset or 0)
            return PaginationState(has_more=full_batch, next_offset=current + item_count)

        if self.pagination.type == PaginationType.CURSOR:
            next_cursor = None
            for name in CURSOR_RESPONSE_FIELDS:
                if data.get(name):
                    next_cursor = str(data[name])
                    break

            # A cursor identical to the one just sent would repeat the page
            if next_cursor is not None and next_cursor == state.next_cursor:
                next_cursor = None

            return PaginationState(has_more=next_cursor is not None, next_cursor=next_cursor)

        # Page-number pagination
        page = _as_int(data.get("page"))
        total_pages = _as_int(data.get("total_pages"))

        if page is not None and total_pages is not None:
            return PaginationState(has_more=page < total_pages, next_page=page + 1)

        # Fallback: assume more data if we got a full batch
        current = page if page is not None else (state.next_page or 1)
        return PaginationState(has_more=full_batch, next_page=current + 1)

    async def collect(
        self,
        fetch_page: Callable[[Dict[str, Any]], Awaitable[Any]],
        normalize: Callable[[Any], NormalizedPage],
        rate_limiter: SlidingWindowRateLimiter,
        since: Optional[datetime] = None,
        base_params: Optional[Dict[str, Any]] = None
    ) -> FetchOutcome:
        """
        Fetch pages until the source is exhausted or the cap is reached.

        Returns:
            FetchOutcome with all documents in page order
        """
        outcome = FetchOutcome()
        state = PaginationState(has_more=True)

        while state.has_more and outcome.requests < self.max_requests:
            await rate_limiter.acquire()

            params = self.build_params(state, since, base_params)
            payload = await fetch_page(params)
            page = normalize(payload)

            outcome.contents.extend(page.contents)
            outcome.requests += 1
            state = self.advance(state, payload, page.item_count)

            self._log.debug(
                f"Fetched page {outcome.requests}: {len(page.contents)} documents, "
                f"total {len(outcome.contents)}, has_more={state.has_more}"
            )

        if state.has_more:
            outcome.truncated = True
            self._log.warning(
                f"Reached maximum request limit ({self.max_requests}) during content fetch"
            )

        return outcome
