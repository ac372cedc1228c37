import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from cache.errors import EmptyError, NotFoundError, TierTimeoutError
from cache.monitoring import CacheMonitor
from explorer.fallback import (
    FallbackReader,
    Outcome,
    Tier,
    async_tier,
    sync_tier,
    thread_tier,
)


@pytest.fixture
def reader():
    return FallbackReader(timeout=0.5)


def read(reader, operation, tiers):
    return asyncio.run(reader.read(operation, tiers))


def test_first_success_wins(reader):
    """Test later tiers are not consulted once a tier answers."""
    cache = Mock(return_value="cached")
    db = Mock(return_value="stored")
    rpc = AsyncMock(return_value="live")

    result = read(reader, "block", [
        sync_tier("cache", cache, 1),
        thread_tier("database", db, 1),
        async_tier("rpc", rpc, 1),
    ])

    assert result.data == "cached"
    assert result.tier == "cache"
    assert result.outcome is Outcome.OK
    cache.assert_called_once_with(1)
    db.assert_not_called()
    rpc.assert_not_awaited()


def test_falls_through_misses_and_errors(reader):
    """Test misses and failures of earlier tiers are not surfaced."""
    cache = Mock(side_effect=NotFoundError("not cached"))
    db = Mock(side_effect=RuntimeError("database down"))
    rpc = AsyncMock(return_value="live")

    result = read(reader, "block", [
        sync_tier("cache", cache, "0xabc"),
        thread_tier("database", db, "0xabc"),
        async_tier("rpc", rpc, "0xabc"),
    ])

    assert result.data == "live"
    assert result.tier == "rpc"
    db.assert_called_once_with("0xabc")
    rpc.assert_awaited_once_with("0xabc")


def test_read_never_writes_back(reader):
    """Test a value served by a later tier is not stored in earlier ones."""
    window = Mock()
    window.block_by_height.side_effect = NotFoundError("not cached")
    db = Mock()
    db.block_by_height.return_value = "stored"

    result = read(reader, "block", [
        sync_tier("cache", window.block_by_height, 5),
        thread_tier("database", db.block_by_height, 5),
    ])

    assert result.data == "stored"
    assert window.method_calls == [("block_by_height", (5,), {})]
    assert db.method_calls == [("block_by_height", (5,), {})]


def test_last_error_is_raised(reader):
    tiers = [
        sync_tier("cache", Mock(side_effect=EmptyError("empty"))),
        async_tier("rpc", AsyncMock(side_effect=ConnectionError("node unreachable"))),
    ]
    with pytest.raises(ConnectionError):
        read(reader, "block", tiers)


def test_all_misses_raise_last_miss(reader):
    tiers = [
        sync_tier("cache", Mock(side_effect=NotFoundError("a"))),
        sync_tier("database", Mock(side_effect=EmptyError("b"))),
    ]
    with pytest.raises(EmptyError):
        read(reader, "block", tiers)

    with pytest.raises(NotFoundError):
        read(reader, "block", [])


def test_accept_turns_result_into_miss(reader):
    """Test a rejected result moves on to the next tier."""
    short_page = Mock(return_value=[1, 2])
    full_page = Mock(return_value=[1, 2, 3])

    result = read(reader, "txs", [
        sync_tier("cache", short_page, accept=lambda page: len(page) == 3),
        sync_tier("database", full_page),
    ])
    assert result.data == [1, 2, 3]
    assert result.tier == "database"

    with pytest.raises(NotFoundError):
        read(reader, "txs", [sync_tier("cache", short_page, accept=lambda page: False)])


def test_timeout_is_a_tier_failure():
    reader = FallbackReader(timeout=0.05)

    async def slow():
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(TierTimeoutError) as exc_info:
        read(reader, "block", [Tier("rpc", slow)])
    assert exc_info.value.tier == "rpc"

    result = read(reader, "block", [Tier("rpc", slow), sync_tier("database", Mock(return_value="ok"))])
    assert result.data == "ok"


def test_attempt_tags_results(reader):
    ok = asyncio.run(reader.attempt("op", sync_tier("cache", Mock(return_value=1)), 1))
    miss = asyncio.run(reader.attempt("op", sync_tier("cache", Mock(side_effect=NotFoundError())), 1))
    failed = asyncio.run(reader.attempt("op", sync_tier("cache", Mock(side_effect=ValueError())), 1))

    assert (ok.outcome, ok.data) == (Outcome.OK, 1)
    assert miss.outcome is Outcome.MISS
    assert isinstance(miss.error, NotFoundError)
    assert failed.outcome is Outcome.ERROR
    assert isinstance(failed.error, ValueError)


def test_cancellation_propagates(reader):
    """Test cancelling the caller is not treated as a tier failure."""
    async def scenario():
        gate = asyncio.Event()

        async def hang():
            gate.set()
            await asyncio.sleep(10)

        fallback = AsyncMock(return_value="never")
        task = asyncio.create_task(
            reader.read("block", [Tier("rpc", hang), async_tier("database", fallback)], timeout=5)
        )
        await gate.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        fallback.assert_not_awaited()

    asyncio.run(scenario())


def test_outcomes_are_counted():
    monitor = CacheMonitor()
    reader = FallbackReader(timeout=0.5, monitor=monitor)

    read(reader, "fallback_count_test", [
        sync_tier("cache", Mock(side_effect=NotFoundError())),
        sync_tier("database", Mock(return_value="x")),
    ])
    read(reader, "fallback_count_test", [sync_tier("cache", Mock(return_value="y"))])

    assert monitor.get_hit_ratio("cache", "fallback_count_test") == 0.5
    assert monitor.get_hit_ratio("database", "fallback_count_test") == 1.0
    assert monitor.get_hit_ratio("rpc", "fallback_count_test") == 0.0
