"""
Bounded polling for an order created by the asynchronous webhook.

The buyer's browser learns the payment id synchronously from the payment UI,
but the order only exists once the processor's webhook has been handled.
The poller reads until the order shows up or the attempts run out. It never
creates anything.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from storefront_checkout.core.errors import TransientStorageError
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CONFIRMED = "confirmed"
PROCESSING = "processing"


@dataclass(frozen=True)
class PollOutcome:
    status: str
    attempts: int
    order: Optional[Any] = None

    @property
    def confirmed(self) -> bool:
        return self.status == CONFIRMED


class ConfirmationPoller:
    """
    Fixed-interval, attempt-capped lookup loop.

    Running out of attempts is a normal "still processing" outcome, not an
    error: the webhook may simply not have arrived yet.
    """

    def __init__(
        self,
        lookup: Callable[[str], Awaitable[Optional[Any]]],
        interval_seconds: float = 1.0,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.lookup = lookup
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def wait_for_order(self, payment_id: str) -> PollOutcome:
        attempts = 0

        async def lookup_once() -> Optional[Any]:
            nonlocal attempts
            attempts += 1
            try:
                return await self.lookup(payment_id)
            except TransientStorageError as e:
                logger.warning(
                    "confirmation_lookup_failed",
                    payment_id=payment_id,
                    attempt=attempts,
                    error=str(e),
                )
                return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.interval_seconds),
            retry=retry_if_result(lambda order: order is None),
            retry_error_callback=lambda retry_state: None,
            sleep=self._sleep,
        )
        order = await retrying(lookup_once)

        if order is not None:
            logger.info("order_confirmed", payment_id=payment_id, attempts=attempts)
            metrics.record_confirmation_poll(CONFIRMED, attempts)
            return PollOutcome(status=CONFIRMED, attempts=attempts, order=order)

        logger.info("order_still_processing", payment_id=payment_id, attempts=attempts)
        metrics.record_confirmation_poll(PROCESSING, attempts)
        return PollOutcome(status=PROCESSING, attempts=attempts)
