# tests/integration/test_purchase_flow.py

import asyncio
import random
import re
from datetime import timedelta

import pytest

from src.application.purchase_service import PurchaseSession
from src.domain.catalog import PaymentMethod, TicketType
from src.domain.exceptions import (
    GatewayError,
    IncompleteSessionError,
    InvalidArgumentError,
    InvalidTransitionError,
    MaxRetriesExceededError,
)
from src.domain.payment import PaymentErrorKind, PaymentResult
from src.domain.state_machine import MAX_RETRY_COUNT, PurchaseState
from src.infrastructure.config import GatewaySettings
from src.infrastructure.payment_gateway import PaymentGateway


def _assert_cleared(session: PurchaseSession) -> None:
    assert session.state is PurchaseState.IDLE
    assert session.selected_ticket_type is None
    assert session.selected_payment_method is None
    assert session.transaction_id is None
    assert session.current_ticket is None
    assert session.retry_count == 0


def _to_payment_selected(session: PurchaseSession) -> None:
    session.select_ticket_type(TicketType.SINGLE)
    session.choose_payment_method(PaymentMethod.CARD)


class UnreachableGateway(PaymentGateway):
    def process_payment(self, method: PaymentMethod, amount: int) -> PaymentResult:
        raise ConnectionError("gateway unreachable")

    async def process_payment_async(self, method, amount, timeout=None) -> PaymentResult:
        raise ConnectionError("gateway unreachable")


# ---------------------
# HAPPY PATH
# ---------------------

def test_purchase_flow_to_active_ticket(session, clock):
    _assert_cleared(session)

    session.select_ticket_type(TicketType.SINGLE)
    assert session.state is PurchaseState.TICKET_SELECTED

    session.choose_payment_method(PaymentMethod.CARD)
    assert session.state is PurchaseState.PAYMENT_METHOD_SELECTED

    session.initiate_payment_processing()
    assert session.state is PurchaseState.PAYMENT_PROCESSING

    session.complete_payment_with_success()
    assert session.state is PurchaseState.PAYMENT_SUCCESS
    assert re.fullmatch(r"TX-[A-Z0-9]{8}", session.transaction_id)

    session.generate_qr_code()
    assert session.state is PurchaseState.QR_GENERATED
    ticket = session.current_ticket
    assert ticket.active is False
    assert ticket.transaction_id == session.transaction_id
    assert re.match(r"QR-[0-9a-f]{8}-[A-Za-z0-9]{1,8}", ticket.qr_code)

    clock.advance(minutes=2)
    session.validate_ticket()
    assert session.state is PurchaseState.TICKET_ACTIVE
    assert ticket.active is True
    assert ticket.validation_time == clock.now
    assert ticket.expiry_time == ticket.validation_time + timedelta(minutes=80)


def test_expire_and_reset_closes_the_cycle(session):
    _to_payment_selected(session)
    assert session.process_payment() is True
    session.generate_qr_code()
    session.validate_ticket()
    ticket = session.current_ticket

    session.expire_ticket()
    assert session.state is PurchaseState.TICKET_EXPIRED
    assert session.current_ticket is ticket
    assert ticket.active is False
    assert ticket.expiry_time is not None

    session.reset()
    _assert_cleared(session)

    # A fresh purchase can start straight away.
    session.select_ticket_type(TicketType.WEEKLY)
    assert session.state is PurchaseState.TICKET_SELECTED


def test_snapshot_reflects_session(session):
    _to_payment_selected(session)
    session.process_payment()
    session.generate_qr_code()

    snapshot = session.snapshot()

    assert snapshot.state is PurchaseState.QR_GENERATED
    assert snapshot.selected_ticket_type is TicketType.SINGLE
    assert snapshot.selected_payment_method is PaymentMethod.CARD
    assert snapshot.transaction_id == session.transaction_id
    assert snapshot.ticket.qr_code == session.current_ticket.qr_code
    assert snapshot.ticket.active is False


def test_allowed_operations_follow_state(session):
    assert session.allowed_operations() == {"select_ticket_type"}
    _to_payment_selected(session)
    assert session.allowed_operations() == {
        "initiate_payment_processing",
        "process_payment",
        "process_payment_async",
        "cancel_purchase",
    }
    assert session.is_in_state(PurchaseState.PAYMENT_METHOD_SELECTED)


# ---------------------
# ILLEGAL OPERATIONS
# ---------------------

def test_generate_qr_code_in_idle_is_rejected(session):
    with pytest.raises(InvalidTransitionError) as exc_info:
        session.generate_qr_code()

    assert exc_info.value.from_state == "IDLE"
    assert exc_info.value.attempted == "generate_qr_code"
    _assert_cleared(session)


_REJECTED_CASES = [
    (PurchaseState.TICKET_SELECTED, "initiate_payment_processing", ()),
    (PurchaseState.TICKET_SELECTED, "complete_payment_with_success", ()),
    (PurchaseState.TICKET_SELECTED, "complete_payment_with_failure", ()),
    (PurchaseState.TICKET_SELECTED, "retry_payment", ()),
    (PurchaseState.TICKET_SELECTED, "validate_ticket", ()),
    (PurchaseState.TICKET_SELECTED, "expire_ticket", ()),
    (PurchaseState.TICKET_SELECTED, "reset", ()),
    (PurchaseState.TICKET_SELECTED, "process_payment", ()),
    (PurchaseState.PAYMENT_METHOD_SELECTED, "choose_payment_method", (PaymentMethod.APPLE_PAY,)),
    (PurchaseState.PAYMENT_METHOD_SELECTED, "select_ticket_type", (TicketType.MONTHLY,)),
    (PurchaseState.PAYMENT_PROCESSING, "cancel_purchase", ()),
    (PurchaseState.PAYMENT_PROCESSING, "initiate_payment_processing", ()),
]


@pytest.mark.parametrize("state, operation, args", _REJECTED_CASES)
def test_rejected_operations_leave_session_unchanged(session, state, operation, args):
    session.select_ticket_type(TicketType.DAY_PASS)
    if state is not PurchaseState.TICKET_SELECTED:
        session.choose_payment_method(PaymentMethod.CARD)
    if state is PurchaseState.PAYMENT_PROCESSING:
        session.initiate_payment_processing()
    before = session.snapshot()

    with pytest.raises(InvalidTransitionError) as exc_info:
        getattr(session, operation)(*args)

    assert exc_info.value.from_state == state.value
    assert exc_info.value.attempted == operation
    assert session.snapshot() == before


def test_select_ticket_type_requires_a_type(session):
    with pytest.raises(InvalidArgumentError) as exc_info:
        session.select_ticket_type(None)

    assert exc_info.value.field == "ticket_type"
    _assert_cleared(session)


def test_choose_payment_method_requires_a_method(session):
    session.select_ticket_type(TicketType.SINGLE)

    with pytest.raises(InvalidArgumentError):
        session.choose_payment_method("bitcoin")

    assert session.state is PurchaseState.TICKET_SELECTED
    assert session.selected_payment_method is None


def test_validate_twice_is_rejected(session):
    _to_payment_selected(session)
    session.process_payment()
    session.generate_qr_code()
    session.validate_ticket()
    expiry_time = session.current_ticket.expiry_time

    with pytest.raises(InvalidTransitionError):
        session.validate_ticket()

    assert session.state is PurchaseState.TICKET_ACTIVE
    assert session.current_ticket.expiry_time == expiry_time


def test_generate_qr_code_without_transaction_id(session):
    _to_payment_selected(session)
    session.process_payment()
    session._transaction_id = None

    with pytest.raises(IncompleteSessionError) as exc_info:
        session.generate_qr_code()

    assert exc_info.value.field == "transaction_id"
    assert session.state is PurchaseState.PAYMENT_SUCCESS
    assert session.current_ticket is None


# ---------------------
# PAYMENT FAILURES
# ---------------------

def test_complete_with_success_rejects_gateway_failure(failing_session):
    _to_payment_selected(failing_session)
    failing_session.initiate_payment_processing()

    with pytest.raises(GatewayError) as exc_info:
        failing_session.complete_payment_with_success()

    assert isinstance(exc_info.value.kind, PaymentErrorKind)
    assert failing_session.state is PurchaseState.PAYMENT_PROCESSING
    assert failing_session.transaction_id is None
    assert failing_session.retry_count == 0

    # The caller routes the declined payment to the failure branch.
    failing_session.complete_payment_with_failure()
    assert failing_session.state is PurchaseState.PAYMENT_FAILED
    assert failing_session.retry_count == 1


def test_process_payment_failure_then_retry(failing_session):
    _to_payment_selected(failing_session)

    assert failing_session.process_payment() is False
    assert failing_session.state is PurchaseState.PAYMENT_FAILED
    assert failing_session.transaction_id is None
    assert failing_session.retry_count == 0

    failing_session.retry_payment()
    assert failing_session.state is PurchaseState.PAYMENT_METHOD_SELECTED
    assert failing_session.retry_count == 1
    assert failing_session.selected_ticket_type is TicketType.SINGLE
    assert failing_session.selected_payment_method is PaymentMethod.CARD


def test_success_after_retry_resets_retry_count(clock):
    gateway = PaymentGateway(success_rate=0.5, rng=random.Random(1), min_latency_ms=0, max_latency_ms=0)
    session = PurchaseSession(gateway=gateway, clock=clock)
    _to_payment_selected(session)

    while not session.process_payment():
        try:
            session.retry_payment()
        except MaxRetriesExceededError:
            _to_payment_selected(session)

    assert session.state is PurchaseState.PAYMENT_SUCCESS
    assert session.retry_count == 0


def test_retry_budget_exhausted_by_forced_gateway_failures(failing_session):
    _to_payment_selected(failing_session)

    for expected_retries in range(1, MAX_RETRY_COUNT + 1):
        assert failing_session.process_payment() is False
        failing_session.retry_payment()
        assert failing_session.retry_count == expected_retries

    assert failing_session.process_payment() is False
    with pytest.raises(MaxRetriesExceededError) as exc_info:
        failing_session.retry_payment()

    assert exc_info.value.max_retries == MAX_RETRY_COUNT
    # Retry exhaustion resets the session even though it raises.
    _assert_cleared(failing_session)


def test_retry_budget_exhausted_through_explicit_failures(session):
    _to_payment_selected(session)
    seen = []

    with pytest.raises(MaxRetriesExceededError):
        while True:
            session.initiate_payment_processing()
            session.complete_payment_with_failure()
            seen.append(session.retry_count)
            session.retry_payment()
            seen.append(session.retry_count)

    assert max(seen) <= MAX_RETRY_COUNT
    _assert_cleared(session)


def test_retry_count_never_exceeds_budget(failing_session):
    _to_payment_selected(failing_session)
    for _ in range(MAX_RETRY_COUNT):
        failing_session.process_payment()
        failing_session.retry_payment()

    failing_session.initiate_payment_processing()
    failing_session.complete_payment_with_failure()

    assert failing_session.retry_count == MAX_RETRY_COUNT
    with pytest.raises(MaxRetriesExceededError):
        failing_session.retry_payment()


# ---------------------
# CANCELLATION
# ---------------------

def test_cancel_from_payment_method_selected(session):
    _to_payment_selected(session)

    session.cancel_purchase()

    _assert_cleared(session)


def test_cancel_after_failed_payment(failing_session):
    _to_payment_selected(failing_session)
    failing_session.process_payment()
    failing_session.retry_payment()
    failing_session.process_payment()

    failing_session.cancel_purchase()

    _assert_cleared(failing_session)


def test_cannot_cancel_after_payment_success(session):
    _to_payment_selected(session)
    session.process_payment()

    with pytest.raises(InvalidTransitionError):
        session.cancel_purchase()

    assert session.state is PurchaseState.PAYMENT_SUCCESS
    assert session.transaction_id is not None


# ---------------------
# ASYNC PAYMENT
# ---------------------

@pytest.mark.asyncio
async def test_async_payment_success(session):
    _to_payment_selected(session)

    assert await session.process_payment_async(timeout=1.0) is True

    assert session.state is PurchaseState.PAYMENT_SUCCESS
    assert session.transaction_id is not None


@pytest.mark.asyncio
async def test_async_payment_timeout_is_a_failure(clock):
    slow = PaymentGateway(success_rate=1.0, rng=random.Random(0), min_latency_ms=200, max_latency_ms=300)
    session = PurchaseSession(gateway=slow, clock=clock)
    _to_payment_selected(session)

    assert await session.process_payment_async(timeout=0.01) is False

    assert session.state is PurchaseState.PAYMENT_FAILED
    assert session.transaction_id is None
    session.retry_payment()
    assert session.retry_count == 1


@pytest.mark.asyncio
async def test_async_payment_cancelled_restores_state(clock):
    slow = PaymentGateway(success_rate=1.0, rng=random.Random(0), min_latency_ms=200, max_latency_ms=300)
    session = PurchaseSession(gateway=slow, clock=clock)
    _to_payment_selected(session)

    task = asyncio.create_task(session.process_payment_async())
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.state is PurchaseState.PAYMENT_METHOD_SELECTED


@pytest.mark.asyncio
async def test_async_payment_rejected_outside_payment_method_selected(session):
    with pytest.raises(InvalidTransitionError) as exc_info:
        await session.process_payment_async()

    assert exc_info.value.attempted == "process_payment_async"
    _assert_cleared(session)


@pytest.mark.asyncio
async def test_async_payment_uses_gateway_configured_timeout(clock):
    settings = GatewaySettings(success_rate=1.0, min_latency_ms=300, max_latency_ms=300, timeout_seconds=0.01)
    session = PurchaseSession(gateway=PaymentGateway.from_settings(settings), clock=clock)
    _to_payment_selected(session)

    assert await session.process_payment_async() is False

    assert session.state is PurchaseState.PAYMENT_FAILED
    assert session.transaction_id is None


# ---------------------
# GATEWAY ERRORS
# ---------------------

def test_gateway_error_restores_payment_method_selected(clock):
    session = PurchaseSession(gateway=UnreachableGateway(), clock=clock)
    _to_payment_selected(session)

    with pytest.raises(ConnectionError):
        session.process_payment()

    assert session.state is PurchaseState.PAYMENT_METHOD_SELECTED
    assert session.selected_ticket_type is TicketType.SINGLE
    assert session.selected_payment_method is PaymentMethod.CARD
    assert session.retry_count == 0
    # The session is usable again once the gateway recovers.
    session.cancel_purchase()
    _assert_cleared(session)


@pytest.mark.asyncio
async def test_async_gateway_error_restores_payment_method_selected(clock):
    session = PurchaseSession(gateway=UnreachableGateway(), clock=clock)
    _to_payment_selected(session)

    with pytest.raises(ConnectionError):
        await session.process_payment_async(timeout=1.0)

    assert session.state is PurchaseState.PAYMENT_METHOD_SELECTED
    assert session.transaction_id is None
    assert "initiate_payment_processing" in session.allowed_operations()
