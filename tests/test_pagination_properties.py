"""
Property-based tests for pagination state derivation.

Properties:
- Offset mode with exact fields: has_more iff offset + limit < total
- Fallback offsets and page numbers strictly increase while pages are full
- collect() never issues more than max_requests requests
"""

import asyncio

from hypothesis import given, settings, strategies as st

from fastrag.sync.connectors.api.pagination import PaginationEngine
from fastrag.sync.connectors.normalizer import ResponseNormalizer
from fastrag.sync.connectors.rate_limiter import SlidingWindowRateLimiter
from fastrag.sync.models import PaginationConfig, PaginationState, PaginationType


@given(
    total=st.integers(min_value=0, max_value=10_000),
    offset=st.integers(min_value=0, max_value=10_000),
    limit=st.integers(min_value=1, max_value=500),
)
def test_offset_has_more_matches_total(total, offset, limit):
    engine = PaginationEngine(PaginationConfig(type=PaginationType.OFFSET), batch_size=limit)
    payload = {"total": total, "offset": offset, "limit": limit, "items": []}

    state = engine.advance(PaginationState(has_more=True), payload, item_count=0)

    assert state.has_more == (offset + limit < total)
    assert state.next_offset == offset + limit


@given(
    batch_size=st.integers(min_value=1, max_value=200),
    pages=st.integers(min_value=1, max_value=20),
    pagination_type=st.sampled_from([PaginationType.OFFSET, PaginationType.PAGE]),
)
def test_fallback_position_strictly_increases(batch_size, pages, pagination_type):
    engine = PaginationEngine(PaginationConfig(type=pagination_type), batch_size=batch_size)
    state = PaginationState(has_more=True)
    positions = []

    for _ in range(pages):
        state = engine.advance(state, [{}] * batch_size, item_count=batch_size)
        assert state.has_more is True
        positions.append(state.next_offset if pagination_type == PaginationType.OFFSET else state.next_page)

    assert all(later > earlier for earlier, later in zip(positions, positions[1:]))


@given(
    max_requests=st.integers(min_value=1, max_value=15),
    available_pages=st.integers(min_value=1, max_value=30),
)
@settings(max_examples=50, deadline=None)
def test_collect_respects_request_cap(max_requests, available_pages):
    engine = PaginationEngine(
        PaginationConfig(type=PaginationType.CURSOR),
        batch_size=1,
        max_requests=max_requests
    )
    calls = []

    async def fetch_page(params):
        calls.append(params)
        index = len(calls)
        payload = {"data": [{"id": str(index), "text": "t"}]}
        if index < available_pages:
            payload["next_cursor"] = f"c{index}"
        return payload

    async def run():
        return await engine.collect(
            fetch_page,
            ResponseNormalizer("src").normalize,
            SlidingWindowRateLimiter(10_000)
        )

    outcome = asyncio.run(run())

    assert outcome.requests == len(calls) == min(max_requests, available_pages)
    assert outcome.truncated == (available_pages > max_requests)
