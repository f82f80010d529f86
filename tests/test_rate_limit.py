from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from riskscope.compute.rate_limit import TokenBucket, get_rate_limiter


def test_first_call_is_free_then_spaced():
    bucket = TokenBucket(rate_per_sec=10, capacity=1)
    assert bucket.reserve() == 0
    assert bucket.reserve() == pytest.approx(0.1, abs=0.01)


def test_reservations_queue_in_arrival_order():
    bucket = TokenBucket.from_interval_ms(500)
    waits = [bucket.reserve() for _ in range(4)]
    assert waits[0] == 0
    assert waits[1] < waits[2] < waits[3]
    assert waits[3] == pytest.approx(1.5, abs=0.05)
    assert bucket.stats()["throttled_calls"] == 3


def test_zero_interval_disables_limiting():
    bucket = TokenBucket.from_interval_ms(0)
    assert all(bucket.reserve() == 0 for _ in range(50))


def test_registry_shares_one_bucket_per_source():
    assert get_rate_limiter("serpapi", 1000) is get_rate_limiter("serpapi", 1000)
    assert get_rate_limiter("serpapi", 1000) is not get_rate_limiter("other", 1000)


@pytest.mark.asyncio
async def test_acquire_sleeps_for_reserved_wait():
    bucket = TokenBucket.from_interval_ms(1000)
    with patch("riskscope.compute.rate_limit.asyncio.sleep", new=AsyncMock()) as sleep:
        await bucket.acquire()
        sleep.assert_not_awaited()
        await bucket.acquire()
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(1.0, abs=0.05)
