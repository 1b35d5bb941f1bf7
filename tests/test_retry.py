from unittest.mock import AsyncMock, patch

import pytest

from app.retry import with_retry


async def test_returns_first_success_without_sleeping():
    operation = AsyncMock(return_value="ok")
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        result = await with_retry(operation, max_attempts=3, base_delay=1.0)
    assert result == "ok"
    assert operation.await_count == 1
    sleep.assert_not_awaited()


async def test_succeeds_on_last_attempt():
    operation = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock):
        result = await with_retry(operation, max_attempts=3, base_delay=0.5)
    assert result == "done"
    assert operation.await_count == 3


async def test_reraises_last_exception_unchanged():
    last = ValueError("third")
    operation = AsyncMock(side_effect=[RuntimeError("first"), KeyError("second"), last])
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(ValueError) as exc_info:
            await with_retry(operation, max_attempts=3, base_delay=1.0)
    assert exc_info.value is last
    assert operation.await_count == 3


async def test_delays_grow_exponentially():
    operation = AsyncMock(side_effect=RuntimeError("down"))
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(RuntimeError):
            await with_retry(operation, max_attempts=4, base_delay=1.0)
    delays = [call.args[0] for call in sleep.await_args_list]
    assert delays == [1.0, 2.0, 4.0]
    assert delays == sorted(delays)


async def test_single_attempt_never_sleeps():
    operation = AsyncMock(side_effect=RuntimeError("down"))
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(RuntimeError):
            await with_retry(operation, max_attempts=1)
    assert operation.await_count == 1
    sleep.assert_not_awaited()


async def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await with_retry(AsyncMock(), max_attempts=0)


async def test_each_failure_is_logged(caplog):
    operation = AsyncMock(side_effect=[RuntimeError("flaky"), "ok"])
    with patch("app.retry.asyncio.sleep", new_callable=AsyncMock):
        with caplog.at_level("WARNING", logger="app.retry"):
            await with_retry(operation, max_attempts=2, label="store write")
    assert "store write failed (attempt 1/2)" in caplog.text
