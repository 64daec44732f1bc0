"""Tests for retry helpers."""
import warnings

import pytest

from vnf_framework.errors import CommError
from vnf_framework.utils.retry import backoff_retrying, is_retriable


class TestBackoffRetrying:
    """Tests for backoff_retrying()."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        """Retriable failures are retried until success."""
        call_count = 0

        async for attempt in backoff_retrying(3, initial=0, maximum=0, jitter=0):
            with attempt:
                call_count += 1
                if call_count < 2:
                    raise CommError("reset", retriable=True)

        assert call_count == 2

    @pytest.mark.asyncio
    async def test_max_attempts_exceeded(self):
        """The last error is re-raised after max_attempts."""
        call_count = 0

        with pytest.raises(CommError):
            async for attempt in backoff_retrying(3, initial=0, maximum=0, jitter=0):
                with attempt:
                    call_count += 1
                    raise CommError("timeout", retriable=True)

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retriable_not_retried(self):
        call_count = 0

        with pytest.raises(CommError):
            async for attempt in backoff_retrying(3, initial=0, maximum=0, jitter=0):
                with attempt:
                    call_count += 1
                    raise CommError("bad request", retriable=False)

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self):
        """Plain exceptions are never retried."""
        call_count = 0

        with pytest.raises(ValueError):
            async for attempt in backoff_retrying(3, initial=0, maximum=0, jitter=0):
                with attempt:
                    call_count += 1
                    raise ValueError("bug")

        assert call_count == 1

    def test_is_retriable(self):
        assert is_retriable(CommError("x", retriable=True))
        assert not is_retriable(CommError("x", retriable=False))
        assert not is_retriable(TimeoutError())

    def test_builds_without_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            retrying = backoff_retrying(3, initial=0.5, maximum=4, jitter=0.1)

        assert retrying.stop is not None
