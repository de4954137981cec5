"""
Duplicate-delivery detection for captured-payment webhooks.

This module implements a two-tier lookup:
1. Redis cache of processed payment ids for fast lookups (optional)
2. The order store, which is the durable source of truth

Both tiers are advisory. Exactly-once order creation rests on the order
store's unique constraint on payment id, which the materializer relies on
when two deliveries race past this check.
"""
from typing import Optional

import redis.asyncio as aioredis
import structlog

from storefront_checkout.core.stores import OrderStore
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class IdempotencyGuard:
    """Answers "has an order already been created for this payment?"."""

    def __init__(
        self,
        order_store: OrderStore,
        redis_client: Optional[aioredis.Redis] = None,
        cache_ttl: int = 86400 * 7,
    ):
        """
        Initialize idempotency guard.

        Args:
            order_store: Durable order store
            redis_client: Optional Redis client for the fast path
            cache_ttl: How long processed payment ids stay cached (seconds)
        """
        self.order_store = order_store
        self.redis_client = redis_client
        self.cache_ttl = cache_ttl

    @staticmethod
    def cache_key(payment_id: str) -> str:
        return f"payment:processed:{payment_id}"

    async def is_processed(self, payment_id: str) -> bool:
        """
        Check whether an order already exists for this payment.

        Redis is consulted first; if it is unavailable the order store
        answers alone.
        """
        if self.redis_client is not None:
            try:
                if await self.redis_client.exists(self.cache_key(payment_id)):
                    logger.info("idempotency_cache_hit", payment_id=payment_id, source="redis")
                    metrics.record_idempotency_hit("redis")
                    return True
            except Exception as e:
                logger.warning("redis_cache_error", error=str(e), payment_id=payment_id)

        existing = await self.order_store.find_by_payment_id(payment_id)
        if existing is None:
            logger.info("idempotency_cache_miss", payment_id=payment_id)
            return False

        logger.info(
            "idempotency_cache_hit",
            payment_id=payment_id,
            source="database",
            order_number=existing.order_number,
        )
        metrics.record_idempotency_hit("database")
        await self.mark_processed(payment_id)
        return True

    async def mark_processed(self, payment_id: str) -> None:
        """Cache a payment id whose order is durably stored."""
        if self.redis_client is None:
            return
        try:
            await self.redis_client.setex(self.cache_key(payment_id), self.cache_ttl, "1")
        except Exception as e:
            logger.warning("redis_cache_store_error", error=str(e), payment_id=payment_id)
