"""Tests for subscription tier providers."""

from notequeue.core.subscriptions import (
    CACHE_KEY_PREFIX,
    CachedSubscriptionProvider,
    StaticSubscriptionProvider,
    normalize_tier,
)


def test_normalize_tier():
    assert normalize_tier("PRO") == "pro"
    assert normalize_tier("platinum") == "free"
    assert normalize_tier(None, default="student") == "student"


async def test_static_provider_overrides():
    provider = StaticSubscriptionProvider("student", overrides={"user-1": "pro"})

    assert await provider.get_subscription_plan("user-1") == "pro"
    assert await provider.get_subscription_plan("user-2") == "student"

    provider.set_tier("user-2", "bogus")
    assert await provider.get_subscription_plan("user-2") == "student"


async def test_cached_provider_caches_in_valkey(mock_valkey):
    inner = StaticSubscriptionProvider("free", overrides={"user-1": "pro"})
    provider = CachedSubscriptionProvider(inner, ttl_seconds=60)

    assert await provider.get_subscription_plan("user-1") == "pro"
    assert mock_valkey[f"{CACHE_KEY_PREFIX}user-1"] == "pro"

    inner.set_tier("user-1", "student")
    assert await provider.get_subscription_plan("user-1") == "pro"

    await provider.invalidate("user-1")
    assert await provider.get_subscription_plan("user-1") == "student"


async def test_cached_provider_survives_cache_outage(monkeypatch):
    async def _down(*args, **kwargs):
        raise ConnectionError("valkey unreachable")

    monkeypatch.setattr("notequeue.db.valkey.get_key", _down)
    monkeypatch.setattr("notequeue.db.valkey.set_key", _down)
    provider = CachedSubscriptionProvider(
        StaticSubscriptionProvider("free", overrides={"user-1": "student"})
    )

    assert await provider.get_subscription_plan("user-1") == "student"
