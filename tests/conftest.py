import random
from datetime import datetime, timedelta, timezone

import pytest

from src.application.purchase_service import PurchaseSession
from src.infrastructure.payment_gateway import PaymentGateway


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_gateway(success_rate: float, seed: int = 42) -> PaymentGateway:
    return PaymentGateway(
        success_rate=success_rate,
        rng=random.Random(seed),
        min_latency_ms=0,
        max_latency_ms=0,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def approving_gateway():
    return make_gateway(success_rate=1.0)


@pytest.fixture
def declining_gateway():
    return make_gateway(success_rate=0.0)


@pytest.fixture
def session(approving_gateway, clock):
    return PurchaseSession(gateway=approving_gateway, clock=clock)


@pytest.fixture
def failing_session(declining_gateway, clock):
    return PurchaseSession(gateway=declining_gateway, clock=clock)


@pytest.fixture
def gateway_factory():
    return make_gateway
