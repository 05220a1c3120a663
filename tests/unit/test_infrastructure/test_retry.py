"""Tests for the shared retry utility."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from supplier_crawler.infrastructure.retry import backoff_delay, retry_async


class TestBackoffDelay:
    """Delay policy: attempt number times the base delay."""

    def test_delay_grows_linearly(self):
        assert backoff_delay(1, 2.0) == 2.0
        assert backoff_delay(2, 2.0) == 4.0
        assert backoff_delay(3, 2.0) == 6.0


class TestRetryAsync:
    """Test cases for retry_async."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        sleep = AsyncMock()
        fn = AsyncMock(return_value="ok")

        result = await retry_async(fn, attempts=3, base_delay=1.0, sleep=sleep)

        assert result == "ok"
        fn.assert_awaited_once_with(1)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_with_incremental_delay(self):
        """Two failures then success sleeps base, then 2 x base."""
        sleep = AsyncMock()
        fn = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])

        result = await retry_async(fn, attempts=3, base_delay=2.0, sleep=sleep)

        assert result == "done"
        assert [c.args[0] for c in fn.await_args_list] == [1, 2, 3]
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        sleep = AsyncMock()
        fn = AsyncMock(side_effect=[ValueError("first"), ValueError("last")])

        with pytest.raises(ValueError, match="last"):
            await retry_async(fn, attempts=2, base_delay=1.0, sleep=sleep)

        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_exception_is_not_retried(self):
        sleep = AsyncMock()
        fn = AsyncMock(side_effect=KeyError("fatal"))

        with pytest.raises(KeyError):
            await retry_async(
                fn,
                attempts=5,
                base_delay=1.0,
                retry_on=lambda e: not isinstance(e, KeyError),
                sleep=sleep,
            )

        fn.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        on_retry = MagicMock()
        error = RuntimeError("flaky")
        fn = AsyncMock(side_effect=[error, "ok"])

        await retry_async(fn, attempts=3, base_delay=0.5, on_retry=on_retry, sleep=AsyncMock())

        on_retry.assert_called_once_with(1, error, 0.5)

    @pytest.mark.asyncio
    async def test_at_least_one_attempt(self):
        fn = AsyncMock(return_value=1)
        assert await retry_async(fn, attempts=0, base_delay=1.0, sleep=AsyncMock()) == 1
