"""Tests for the Limiter facade."""

from unittest.mock import Mock

import pytest

from throttlekit.adapters.store.in_memory import InMemoryTTLStore
from throttlekit.core.config import LimiterSettings
from throttlekit.core.errors import ConfigurationError, RateLimited
from throttlekit.core.limiter import Limiter


class TestRegistration:
    """Policy registration fails fast and is visible afterwards."""

    def test_register_policy_with_mapping_and_keywords(self, limiter: Limiter) -> None:
        policy = limiter.register_policy("login", {"threshold": 5}, interval=300)

        assert policy.threshold == 5
        assert limiter.configurations["login"] is policy

    @pytest.mark.parametrize(
        "fields",
        [
            {"threshold": 0, "interval": 60},
            {"threshold": 5, "interval": 0},
            {"threshold": 10, "interval": 60, "burst_rate": 10},
        ],
    )
    def test_register_invalid_policy_raises(self, limiter: Limiter, fields: dict) -> None:
        with pytest.raises(ConfigurationError):
            limiter.register_policy("bad", fields)

        assert "bad" not in limiter.configurations

    def test_configurations_view_is_read_only(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=5, interval=60)

        with pytest.raises(TypeError):
            limiter.configurations["other"] = None  # type: ignore[index]

    def test_unregistered_handle_raises_on_every_operation(self, limiter: Limiter) -> None:
        for operation in (
            limiter.throttle,
            limiter.throttle_or_fail,
            limiter.is_throttled,
            limiter.current_count,
            limiter.reset,
        ):
            with pytest.raises(ConfigurationError):
                operation("unknown", "k")

    def test_from_settings_registers_configured_policies(self) -> None:
        limiter_settings = LimiterSettings(
            store_backend="memory",
            policies={
                "login": {"threshold": 5, "interval": 60},
                "api": {"threshold": 10, "interval": 60, "burst_rate": 15},
            },
        )

        limiter = Limiter.from_settings(limiter_settings)

        assert isinstance(limiter.store, InMemoryTTLStore)
        assert set(limiter.configurations) == {"login", "api"}
        assert limiter.configurations["api"].leaky_bucket is True

    def test_from_settings_rejects_unknown_backend(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown store backend"):
            Limiter.from_settings(LimiterSettings(store_backend="memcached"))

    def test_from_settings_requires_redis_url(self) -> None:
        with pytest.raises(ConfigurationError, match="REDIS_URL"):
            Limiter.from_settings(LimiterSettings(store_backend="redis", redis_url=None))


class TestFixedWindow:
    """Fixed-window decisions through the facade."""

    def test_five_calls_allowed_then_throttled(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=5, interval=60)

        for expected in range(1, 6):
            assert limiter.throttle("login", "acct") is False
            assert limiter.current_count("login", "acct") == expected

        assert limiter.throttle("login", "acct") is True
        assert limiter.current_count("login", "acct") == 5

    def test_window_boundary_starts_fresh(self, limiter: Limiter, clock) -> None:
        limiter.register_policy("login", threshold=1, interval=60)

        clock.advance(59)
        assert limiter.throttle("login", "acct") is False
        assert limiter.throttle("login", "acct") is True

        clock.advance(2)
        assert limiter.current_count("login", "acct") == 0
        assert limiter.throttle("login", "acct") is False

    def test_keys_are_isolated(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)

        assert limiter.throttle("login", ["acct", 1]) is False
        assert limiter.throttle("login", ["acct", 1]) is True
        assert limiter.throttle("login", ["acct", 2]) is False

    def test_call_options_override_threshold(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=5, interval=60)

        assert limiter.throttle("login", "acct", {"threshold": 1}) is False
        assert limiter.throttle("login", "acct", {"threshold": 1}) is True
        assert limiter.throttle("login", "acct") is False

    def test_guarded_action_runs_only_when_admitted(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)
        action = Mock()

        assert limiter.throttle("login", "acct", action=action) is False
        assert limiter.throttle("login", "acct", action=action) is True

        action.assert_called_once_with()

    def test_reset_then_count_is_zero(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=2, interval=60)
        limiter.throttle("login", "acct")
        limiter.throttle("login", "acct")

        limiter.reset("login", "acct")

        assert limiter.current_count("login", "acct") == 0
        assert limiter.is_throttled("login", "acct") is False

    def test_store_stays_bounded_across_many_windows(
        self, limiter: Limiter, store: InMemoryTTLStore, clock
    ) -> None:
        limiter.register_policy("login", threshold=5, interval=1)

        for _ in range(1_000):
            assert limiter.throttle("login", "acct") is False
            clock.advance(1)

        assert store.stats()["entries"] <= 1


class TestLeakyBucket:
    """Leaky-bucket decisions through the facade."""

    def test_burst_then_throttle_then_recover(self, limiter: Limiter, clock) -> None:
        limiter.register_policy("api", threshold=10, interval=60, burst_rate=15)

        for _ in range(10):
            assert limiter.throttle("api", "acct") is False
        assert limiter.current_count("api", "acct") == pytest.approx(10.0)

        for _ in range(5):
            assert limiter.throttle("api", "acct") is False

        assert limiter.throttle("api", "acct") is True
        assert limiter.is_throttled("api", "acct") is True

        clock.advance(6)  # drains one unit
        assert limiter.current_count("api", "acct") == pytest.approx(14.0)
        assert limiter.throttle("api", "acct") is False
        assert limiter.throttle("api", "acct") is True

    def test_reset_then_count_is_zero(self, limiter: Limiter) -> None:
        limiter.register_policy("api", threshold=10, interval=60, burst_rate=15)
        limiter.throttle("api", "acct")

        limiter.reset("api", "acct")

        assert limiter.current_count("api", "acct") == 0.0

    def test_query_aliases(self, limiter: Limiter) -> None:
        limiter.register_policy("api", threshold=10, interval=60, burst_rate=15)
        limiter.throttle("api", "acct", {"increment": 3})

        assert limiter.count("api", "acct") == pytest.approx(3.0)
        assert limiter.query("api", "acct") == pytest.approx(3.0)


class TestReadOnlyQueries:
    def test_queries_do_not_mutate_store(self, limiter: Limiter, store: InMemoryTTLStore) -> None:
        limiter.register_policy("login", threshold=3, interval=60)
        limiter.throttle("login", "acct")
        entries_before = store.stats()["entries"]

        results = [
            (limiter.current_count("login", "acct"), limiter.is_throttled("login", "acct"))
            for _ in range(10)
        ]

        assert set(results) == {(1, False)}
        assert store.stats()["entries"] == entries_before
        assert limiter.current_count("login", "acct") == 1


class TestThrottleOrFail:
    def test_returns_count_when_admitted(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=3, interval=60)

        assert limiter.throttle_or_fail("login", "acct") == 1
        assert limiter.throttle_or_fail("login", "acct") == 2

    def test_returns_action_result_when_admitted(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=3, interval=60)

        assert limiter.throttle_or_fail("login", "acct", action=lambda: "done") == "done"

    def test_raises_rate_limited_with_context(self, limiter: Limiter, clock) -> None:
        limiter.register_policy(
            "login", threshold=1, interval=60, description="Too many login attempts"
        )
        limiter.throttle_or_fail("login", ["acct", 7])
        clock.advance(20)

        with pytest.raises(RateLimited) as exc_info:
            limiter.throttle_or_fail("login", ["acct", 7])

        exc = exc_info.value
        assert exc.code == "rate_limited"
        assert exc.handle == "login"
        assert exc.key == ["acct", 7]
        assert exc.threshold == 1
        assert exc.interval == 60.0
        assert exc.cache_key.startswith("test/fixed_window/")
        assert exc.retry_after == 40
        assert exc.description == "Too many login attempts"
        assert "login threshold of 1 tries per 60s exceeded" in str(exc)

    def test_leaky_bucket_rate_limited_reports_strategy(self, limiter: Limiter) -> None:
        limiter.register_policy("api", threshold=1, interval=60, burst_rate=2)
        limiter.throttle_or_fail("api", "acct")
        limiter.throttle_or_fail("api", "acct")

        with pytest.raises(RateLimited) as exc_info:
            limiter.throttle_or_fail("api", "acct")

        assert exc_info.value.strategy == "leaky_bucket"
        assert exc_info.value.cache_key.startswith("test/leaky_bucket/")
        assert exc_info.value.retry_after >= 1


class TestDisabled:
    def test_disabled_scope_never_raises_or_counts(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)
        limiter.throttle("login", "acct")

        with limiter.disabled():
            assert limiter.is_disabled is True
            for _ in range(5):
                assert limiter.throttle("login", "acct") is False
                assert limiter.throttle_or_fail("login", "acct") == 1

        assert limiter.is_disabled is False
        assert limiter.current_count("login", "acct") == 1
        assert limiter.throttle("login", "acct") is True

    def test_disabled_still_runs_guarded_action(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)
        action = Mock(return_value="ran")

        with limiter.disabled():
            assert limiter.throttle("login", "acct", action=action) is False
            assert limiter.throttle_or_fail("login", "acct", action=action) == "ran"

        assert action.call_count == 2
        assert limiter.current_count("login", "acct") == 0

    def test_disabled_restored_after_error(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)

        with pytest.raises(RuntimeError):
            with limiter.disabled():
                limiter.throttle_or_fail("login", "acct")
                raise RuntimeError("boom")

        assert limiter.is_disabled is False
        limiter.throttle_or_fail("login", "acct")
        with pytest.raises(RateLimited):
            limiter.throttle_or_fail("login", "acct")

    def test_nested_scopes_restore_outermost(self, limiter: Limiter) -> None:
        with limiter.disabled():
            with limiter.disabled():
                assert limiter.is_disabled is True
            assert limiter.is_disabled is True
        assert limiter.is_disabled is False

    def test_disabled_still_validates_configuration(self, limiter: Limiter) -> None:
        with limiter.disabled():
            with pytest.raises(ConfigurationError):
                limiter.throttle("unknown", "acct")


class TestBeforeThrottleCallback:
    def test_fires_once_per_throttled_call(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=2, interval=60)
        callback = Mock()
        limiter.on_before_throttle(callback)

        limiter.throttle("login", "acct")
        limiter.throttle("login", "acct")
        callback.assert_not_called()

        limiter.throttle("login", "acct")
        with pytest.raises(RateLimited):
            limiter.throttle_or_fail("login", "acct")

        assert callback.call_count == 2
        callback.assert_called_with("login", "acct", 2, 60.0)

    def test_not_fired_while_disabled(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)
        callback = Mock()
        limiter.on_before_throttle(callback)
        limiter.throttle("login", "acct")

        with limiter.disabled():
            limiter.throttle("login", "acct")

        callback.assert_not_called()

    def test_can_be_used_as_decorator_and_removed(self, limiter: Limiter) -> None:
        limiter.register_policy("login", threshold=1, interval=60)
        calls = []

        @limiter.on_before_throttle
        def record(handle, key, threshold, interval):
            calls.append((handle, key, threshold, interval))

        limiter.throttle("login", "acct")
        limiter.throttle("login", "acct")
        limiter.on_before_throttle(None)
        limiter.throttle("login", "acct")

        assert calls == [("login", "acct", 1, 60.0)]


def test_store_errors_propagate() -> None:
    store = Mock()
    store.read.side_effect = ConnectionError("store down")
    limiter = Limiter(store)
    limiter.register_policy("login", threshold=1, interval=60)

    with pytest.raises(ConnectionError):
        limiter.throttle("login", "acct")


def test_one_shot_iterator_key_is_used_consistently(limiter: Limiter) -> None:
    limiter.register_policy("login", threshold=1, interval=60)
    callback = Mock()
    limiter.on_before_throttle(callback)

    limiter.throttle_or_fail("login", (part for part in ["acct", 7]))
    with pytest.raises(RateLimited) as exc_info:
        limiter.throttle_or_fail("login", iter(["acct", 7]))

    assert exc_info.value.key == ("acct", 7)
    assert "('acct', 7)" in str(exc_info.value)
    callback.assert_called_once_with("login", ("acct", 7), 1, 60.0)
    assert limiter.current_count("login", ["acct", 7]) == 1
    # An exhausted iterator would have counted against the empty key
    assert limiter.current_count("login") == 0
