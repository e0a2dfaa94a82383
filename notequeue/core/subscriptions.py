"""
SubscriptionProvider interface and implementations.

The facade asks for a user's tier to pick the job priority. Billing lives
elsewhere; this module only answers "which tier is this user on".

- StaticSubscriptionProvider: configured default tier plus explicit overrides.
- CachedSubscriptionProvider: wraps another provider with a Valkey cache.
"""

import logging
from typing import Dict, Optional, Protocol

from notequeue.db import valkey
from notequeue.models.enums import SubscriptionTier

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "subscription:user:"


def normalize_tier(tier: Optional[str], default: str = SubscriptionTier.FREE.value) -> str:
    try:
        return SubscriptionTier(str(tier).lower()).value
    except ValueError:
        return default


class SubscriptionProvider(Protocol):
    async def get_subscription_plan(self, user_id: str) -> str:
        ...


class StaticSubscriptionProvider:
    def __init__(
        self,
        default_tier: str = SubscriptionTier.FREE.value,
        overrides: Optional[Dict[str, str]] = None,
    ):
        self.default_tier = normalize_tier(default_tier)
        self.overrides = {
            user_id: normalize_tier(tier, self.default_tier)
            for user_id, tier in (overrides or {}).items()
        }

    def set_tier(self, user_id: str, tier: str) -> None:
        self.overrides[user_id] = normalize_tier(tier, self.default_tier)

    async def get_subscription_plan(self, user_id: str) -> str:
        return self.overrides.get(user_id, self.default_tier)


class CachedSubscriptionProvider:
    """Caches tiers from an inner provider in Valkey.

    Cache failures fall through to the inner provider; a broken cache must not
    block enqueueing.
    """

    def __init__(self, inner: SubscriptionProvider, ttl_seconds: int = 300):
        self.inner = inner
        self.ttl_seconds = ttl_seconds

    async def get_subscription_plan(self, user_id: str) -> str:
        key = f"{CACHE_KEY_PREFIX}{user_id}"
        try:
            cached = await valkey.get_key(key)
            if cached:
                return normalize_tier(cached)
        except Exception as e:
            logger.warning(f"Subscription cache read failed for {user_id}: {e}")

        tier = normalize_tier(await self.inner.get_subscription_plan(user_id))

        try:
            await valkey.set_key(key, tier, ttl=self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Subscription cache write failed for {user_id}: {e}")
        return tier

    async def invalidate(self, user_id: str) -> None:
        await valkey.delete_key(f"{CACHE_KEY_PREFIX}{user_id}")
