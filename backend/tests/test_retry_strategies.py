"""Tests for retry backoff policies."""

import random

import pytest

from workflow.retry_strategies import RETRY_PRESETS, RetryPolicy, RetryStrategy


@pytest.mark.unit
class TestRetryStrategyCreation:

    def test_none_strategy(self):
        s = RetryStrategy.none()
        assert s.policy == RetryPolicy.NONE
        assert not s.should_retry(0)

    def test_from_node_config_defaults_to_fixed(self):
        s = RetryStrategy.from_node_config({"maxRetries": 4, "retryDelay": 15})
        assert s.policy == RetryPolicy.FIXED
        assert s.max_retries == 4
        assert s.base_delay == 15.0

    def test_from_node_config_preset(self):
        s = RetryStrategy.from_node_config({"backoff": "email"})
        assert s.policy == RetryPolicy.LINEAR
        assert s.base_delay == 300.0

    def test_preset_is_copied(self):
        s = RetryStrategy.from_node_config({"backoff": "aggressive"})
        s.max_retries = 1
        assert RETRY_PRESETS["aggressive"].max_retries == 7

    def test_from_node_config_backoff_mapping(self):
        s = RetryStrategy.from_node_config({
            "retryDelay": 2,
            "backoff": {"policy": "exponential", "maxDelay": 10, "jitter": True},
        })
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_delay == 10.0
        assert s.jitter is True

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            RetryStrategy.from_node_config({"backoff": {"policy": "random"}})

    def test_to_dict(self):
        assert RetryStrategy.fixed(max_retries=2, delay=5).to_dict() == {
            "policy": "fixed",
            "maxRetries": 2,
            "retryDelay": 5,
            "maxDelay": 86400.0,
            "jitter": False,
        }


@pytest.mark.unit
class TestComputeDelay:

    def test_fixed(self):
        s = RetryStrategy.fixed(delay=30)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [30, 30, 30]

    def test_linear(self):
        s = RetryStrategy.linear(base_delay=2)
        assert [s.compute_delay(n) for n in (1, 2, 3)] == [2, 4, 6]

    def test_exponential_capped(self):
        s = RetryStrategy.exponential(base_delay=1, max_delay=5)
        assert [s.compute_delay(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 5]

    def test_jitter_stays_in_range(self):
        s = RetryStrategy.exponential(base_delay=10, jitter=True)
        rng = random.Random(3)
        for _ in range(20):
            assert 5 <= s.compute_delay(1, rng) <= 15

    def test_should_retry_counts_retries(self):
        s = RetryStrategy.fixed(max_retries=2)
        assert s.should_retry(0)
        assert s.should_retry(1)
        assert not s.should_retry(2)
