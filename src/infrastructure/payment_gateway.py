# src/infrastructure/payment_gateway.py

import asyncio
import logging
import random
import string
import time
from typing import Optional

from src.domain.catalog import PaymentMethod
from src.domain.payment import (
    PaymentErrorKind,
    PaymentResult,
    RANDOM_FAILURE_KINDS,
)
from src.infrastructure.config import GatewaySettings, load_gateway_settings


logger = logging.getLogger(__name__)

_TX_ALPHABET = string.ascii_uppercase + string.digits


class PaymentGateway:
    """
    Simulated payment authorizer.

    Succeeds with probability ``success_rate`` after a random delay.
    Keeps no state between calls except its random source, which is
    injectable so tests can seed it.
    """

    def __init__(
        self,
        success_rate: float = 0.8,
        rng: Optional[random.Random] = None,
        min_latency_ms: int = 100,
        max_latency_ms: int = 300,
        timeout_seconds: Optional[float] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("Success rate must be between 0.0 and 1.0")
        if min_latency_ms < 0 or max_latency_ms < min_latency_ms:
            raise ValueError("Latency bounds must satisfy 0 <= min <= max")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("Timeout must be positive")

        self.success_rate = success_rate
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max_latency_ms
        self.timeout_seconds = timeout_seconds
        self._rng = rng if rng is not None else random.Random()

    @classmethod
    def from_settings(cls, settings: Optional[GatewaySettings] = None) -> "PaymentGateway":
        settings = settings or load_gateway_settings()
        return cls(
            success_rate=settings.success_rate,
            rng=random.Random(settings.rng_seed),
            min_latency_ms=settings.min_latency_ms,
            max_latency_ms=settings.max_latency_ms,
            timeout_seconds=settings.timeout_seconds,
        )

    def process_payment(self, method: PaymentMethod, amount: int) -> PaymentResult:
        rejected = self._reject_invalid(method, amount)
        if rejected is not None:
            return rejected

        logger.info("Processing payment: %s HUF via %s", amount, method.display_name)
        delay = self._draw_latency()
        if delay:
            time.sleep(delay)
        return self._draw_outcome()

    async def process_payment_async(
        self,
        method: PaymentMethod,
        amount: int,
        timeout: Optional[float] = None,
    ) -> PaymentResult:
        """
        Async variant of process_payment.

        When ``timeout`` (or the gateway default ``timeout_seconds``)
        elapses before the simulated authorization finishes, a TIMEOUT
        failure is returned instead of raising.
        """
        rejected = self._reject_invalid(method, amount)
        if rejected is not None:
            return rejected

        if timeout is None:
            timeout = self.timeout_seconds
        logger.info("Processing payment (async): %s HUF via %s", amount, method.display_name)
        try:
            return await asyncio.wait_for(self._authorize(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Payment timed out after %.3f seconds", timeout)
            return PaymentResult.failed(PaymentErrorKind.TIMEOUT)

    async def _authorize(self) -> PaymentResult:
        delay = self._draw_latency()
        await asyncio.sleep(delay)
        return self._draw_outcome()

    def _reject_invalid(self, method, amount) -> Optional[PaymentResult]:
        if not isinstance(method, PaymentMethod):
            logger.error("Payment method is missing or unknown: %r", method)
            return PaymentResult.failed(PaymentErrorKind.INVALID_METHOD)
        if amount is None or amount <= 0:
            logger.error("Invalid amount: %s", amount)
            return PaymentResult.failed(PaymentErrorKind.INVALID_AMOUNT)
        return None

    def _draw_latency(self) -> float:
        if self.max_latency_ms == 0:
            return 0.0
        return self._rng.randint(self.min_latency_ms, self.max_latency_ms) / 1000.0

    def _draw_outcome(self) -> PaymentResult:
        if self._rng.random() < self.success_rate:
            transaction_id = self._generate_transaction_id()
            logger.info("Payment successful. Transaction ID: %s", transaction_id)
            return PaymentResult.succeeded(transaction_id)

        kind = self._rng.choice(RANDOM_FAILURE_KINDS)
        logger.warning("Payment failed: %s", kind.message)
        return PaymentResult.failed(kind)

    def _generate_transaction_id(self) -> str:
        return "TX-" + "".join(self._rng.choice(_TX_ALPHABET) for _ in range(8))
