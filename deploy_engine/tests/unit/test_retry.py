"""Unit tests for deploy_engine.executor.retry."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from deploy_engine.executor.retry import RetryConfig, _compute_delay, retry_with_backoff

# ---------------------------------------------------------------------------
# RetryConfig / _compute_delay
# ---------------------------------------------------------------------------


class TestComputeDelay:
    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 2.0
        assert config.max_delay == 30.0

    def test_exponential_growth_no_jitter(self):
        config = RetryConfig(base_delay=1.0, max_delay=100.0, jitter=False)
        assert [_compute_delay(n, config) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_max_delay_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert _compute_delay(10, config) == 5.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=10.0, max_delay=100.0, jitter=True)
        for _ in range(50):
            assert 5.0 <= _compute_delay(0, config) <= 15.0


# ---------------------------------------------------------------------------
# retry_with_backoff
# ---------------------------------------------------------------------------


class TestRetryWithBackoff:
    def test_succeeds_first_try(self):
        fn = MagicMock(return_value=42)
        assert retry_with_backoff(fn, RetryConfig()) == 42
        assert fn.call_count == 1

    @patch("deploy_engine.executor.retry.time.sleep")
    def test_succeeds_after_retries(self, mock_sleep: MagicMock):
        fn = MagicMock(side_effect=[ValueError("blip"), ValueError("blip"), "ok"])
        config = RetryConfig(max_retries=3, base_delay=0.01, jitter=False)

        assert retry_with_backoff(fn, config, retryable_exceptions=(ValueError,)) == "ok"
        assert mock_sleep.call_count == 2

    def test_injected_sleep(self):
        sleeps: list[float] = []
        fn = MagicMock(side_effect=[ValueError("blip"), "ok"])
        config = RetryConfig(max_retries=1, base_delay=3.0, jitter=False)

        retry_with_backoff(fn, config, retryable_exceptions=(ValueError,), sleep=sleeps.append)
        assert sleeps == [3.0]

    @patch("deploy_engine.executor.retry.time.sleep")
    def test_exhausts_retries_raises(self, mock_sleep: MagicMock):
        fn = MagicMock(side_effect=RuntimeError("always fails"))
        config = RetryConfig(max_retries=2, base_delay=0.01, jitter=False)

        with pytest.raises(RuntimeError, match="always fails"):
            retry_with_backoff(fn, config, retryable_exceptions=(RuntimeError,))
        assert fn.call_count == 3

    @patch("deploy_engine.executor.retry.time.sleep")
    def test_only_retryable_exceptions_retried(self, mock_sleep: MagicMock):
        fn = MagicMock(side_effect=TypeError("not retryable"))

        with pytest.raises(TypeError):
            retry_with_backoff(fn, RetryConfig(), retryable_exceptions=(ValueError,))
        assert fn.call_count == 1
        assert mock_sleep.call_count == 0
