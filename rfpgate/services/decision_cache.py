"""
Short-lived Redis cache for Allow decisions.

Only Allow is cached, so a revocation can be missed for at most the TTL while
a new grant is visible immediately. Disabled when ``ACCESS_CACHE_TTL_SECONDS``
is 0. Any Redis failure falls through to a fresh evaluation.
"""
import json
from typing import Callable, Optional

import redis

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger
from rfpgate.core.rbac import Actor
from rfpgate.services.outcomes import AccessDecision

logger = get_logger(__name__)

KEY_PREFIX = "rfpgate:access"


def _get_redis_client():
    """Get Redis client."""
    try:
        return redis.from_url(settings.REDIS_URL)
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}")
        return None


class DecisionCache:

    def __init__(self, ttl_seconds: Optional[int] = None, client=None):
        self.ttl_seconds = settings.ACCESS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    @property
    def client(self):
        if self._client is None:
            self._client = _get_redis_client()
        return self._client

    @staticmethod
    def cache_key(target: str, target_id: int, actor: Actor) -> str:
        return f"{KEY_PREFIX}:{target}:{target_id}:{actor.cache_identity()}"

    def get(self, target: str, target_id: int, actor: Actor) -> Optional[AccessDecision]:
        if not self.enabled:
            return None
        r = self.client
        if not r:
            return None

        try:
            cached = r.get(self.cache_key(target, target_id, actor))
            if cached:
                return AccessDecision.from_dict(json.loads(cached))
        except Exception as e:
            logger.warning(f"Decision cache read error: {e}")
        return None

    def put(self, target: str, target_id: int, actor: Actor, decision: AccessDecision) -> None:
        if not self.enabled or not decision.allowed:
            return
        r = self.client
        if not r:
            return

        try:
            r.setex(
                self.cache_key(target, target_id, actor),
                self.ttl_seconds,
                json.dumps(decision.to_dict()),
            )
        except Exception as e:
            logger.warning(f"Decision cache write error: {e}")

    def get_or_evaluate(
        self,
        target: str,
        target_id: int,
        actor: Actor,
        evaluate: Callable[[], AccessDecision],
    ) -> AccessDecision:
        cached = self.get(target, target_id, actor)
        if cached is not None:
            return cached
        decision = evaluate()
        self.put(target, target_id, actor, decision)
        return decision


def get_decision_cache() -> DecisionCache:
    """FastAPI dependency; overridden in tests."""
    return DecisionCache()
