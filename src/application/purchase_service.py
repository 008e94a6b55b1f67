import asyncio
import logging
from typing import Optional, Set

from src.application.schemas import SessionSnapshot, TicketSnapshot
from src.domain.catalog import PaymentMethod, TicketType
from src.domain.exceptions import (
    GatewayError,
    IncompleteSessionError,
    InvalidArgumentError,
    MaxRetriesExceededError,
    TicketNotActiveError,
)
from src.domain.payment import PaymentResult
from src.domain.state_machine import (
    MAX_RETRY_COUNT,
    PurchaseState,
    PurchaseStateMachine,
)
from src.domain.ticket import Clock, Ticket, utc_now
from src.infrastructure.payment_gateway import PaymentGateway


logger = logging.getLogger(__name__)


class PurchaseSession:
    """
    Controller for one ticket purchase flow.

    Holds the FSM state plus the extended state (selected ticket type,
    payment method, transaction id, retry counter and issued ticket).
    Every operation checks its precondition state before touching
    anything, so a rejected call leaves the session unchanged. Retry
    exhaustion is the one exception: it resets to IDLE, then raises.

    Not safe for concurrent use; callers sharing a session must
    serialize access to it.
    """

    def __init__(
        self,
        gateway: Optional[PaymentGateway] = None,
        clock: Clock = utc_now,
    ):
        self.gateway = gateway if gateway is not None else PaymentGateway()
        self._clock = clock
        self._reset_extended_state()
        logger.info("Purchase session initialized in state: %s", self._state.value)

    # ---------------------
    # Read-only accessors
    # ---------------------

    @property
    def state(self) -> PurchaseState:
        return self._state

    @property
    def selected_ticket_type(self) -> Optional[TicketType]:
        return self._selected_ticket_type

    @property
    def selected_payment_method(self) -> Optional[PaymentMethod]:
        return self._selected_payment_method

    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    @property
    def current_ticket(self) -> Optional[Ticket]:
        return self._current_ticket

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def is_in_state(self, state: PurchaseState) -> bool:
        return self._state is state

    def allowed_operations(self) -> Set[str]:
        return PurchaseStateMachine.get_allowed_operations(self._state)

    # ---------------------
    # Transitions
    # ---------------------

    def select_ticket_type(self, ticket_type: TicketType) -> None:
        logger.info("select_ticket_type called with type: %s", ticket_type)
        target = self._check("select_ticket_type")

        if ticket_type is None:
            raise InvalidArgumentError("ticket_type")
        if not isinstance(ticket_type, TicketType):
            raise InvalidArgumentError("ticket_type", f"unknown ticket type {ticket_type!r}")

        self._selected_ticket_type = ticket_type
        self._move_to(target)
        logger.info("Ticket type selected: %s", ticket_type.display_name)

    def choose_payment_method(self, method: PaymentMethod) -> None:
        logger.info("choose_payment_method called with method: %s", method)
        target = self._check("choose_payment_method")
        self._require(self._selected_ticket_type, "selected_ticket_type")

        if method is None:
            raise InvalidArgumentError("payment_method")
        if not isinstance(method, PaymentMethod):
            raise InvalidArgumentError("payment_method", f"unknown payment method {method!r}")

        self._selected_payment_method = method
        self._move_to(target)
        logger.info("Payment method selected: %s", method.display_name)

    def initiate_payment_processing(self) -> None:
        logger.info("initiate_payment_processing called")
        target = self._check("initiate_payment_processing")
        self._require_payment_details()
        self._move_to(target)

    def complete_payment_with_success(self) -> None:
        """
        Runs the gateway and records its transaction id.

        The caller is expected to route declined payments through
        complete_payment_with_failure; a gateway failure here raises
        GatewayError and the session stays in PAYMENT_PROCESSING.
        """
        logger.info("complete_payment_with_success called")
        target = self._check("complete_payment_with_success")
        self._require_payment_details()

        result = self.gateway.process_payment(
            self._selected_payment_method,
            self._selected_ticket_type.price_huf,
        )
        if not result.success:
            raise GatewayError(result.error_kind, result.message)

        self._record_success(result, target)

    def complete_payment_with_failure(self) -> None:
        logger.info("complete_payment_with_failure called")
        target = self._check("complete_payment_with_failure")
        self._record_failure(target, "Payment failed")

    def process_payment(self) -> bool:
        """
        Initiates and completes the payment in one call.

        Returns True when the gateway authorized the payment. A declined
        payment lands in PAYMENT_FAILED; the retry budget is spent by the
        retry_payment call that follows.
        """
        logger.info("process_payment called")
        self._check("process_payment")
        self._require_payment_details()

        previous = self._state
        self._move_to(PurchaseStateMachine.target_of("initiate_payment_processing"))
        try:
            result = self.gateway.process_payment(
                self._selected_payment_method,
                self._selected_ticket_type.price_huf,
            )
        except Exception:
            self._restore(previous, "Payment gateway raised")
            raise
        return self._apply_result(result)

    async def process_payment_async(self, timeout: Optional[float] = None) -> bool:
        """
        Async variant of process_payment.

        A gateway timeout is handled like a declined payment. If the gateway
        raises or the caller cancels, the session goes back to
        PAYMENT_METHOD_SELECTED before the error propagates.
        """
        logger.info("process_payment_async called (timeout=%s)", timeout)
        self._check("process_payment_async")
        self._require_payment_details()

        previous = self._state
        self._move_to(PurchaseStateMachine.target_of("initiate_payment_processing"))
        try:
            result = await self.gateway.process_payment_async(
                self._selected_payment_method,
                self._selected_ticket_type.price_huf,
                timeout=timeout,
            )
        except asyncio.CancelledError:
            self._restore(previous, "Payment cancelled by caller")
            raise
        except Exception:
            self._restore(previous, "Payment gateway raised")
            raise
        return self._apply_result(result)

    def retry_payment(self) -> None:
        logger.info("retry_payment called (attempt %s)", self._retry_count + 1)
        target = self._check("retry_payment")

        if self._retry_count + 1 > MAX_RETRY_COUNT:
            logger.error("Maximum retry attempts (%s) exceeded", MAX_RETRY_COUNT)
            self._reset_extended_state()
            raise MaxRetriesExceededError(MAX_RETRY_COUNT)

        self._retry_count += 1
        self._move_to(target)
        logger.info("Retry count: %s", self._retry_count)

    def generate_qr_code(self) -> None:
        logger.info("generate_qr_code called")
        target = self._check("generate_qr_code")

        if not self._transaction_id or not self._transaction_id.strip():
            raise IncompleteSessionError("transaction_id")
        self._require(self._selected_ticket_type, "selected_ticket_type")

        self._current_ticket = Ticket(
            self._selected_ticket_type,
            self._transaction_id,
            clock=self._clock,
        )
        self._move_to(target)
        logger.info("QR code generated: %s", self._current_ticket.qr_code)

    def validate_ticket(self) -> None:
        logger.info("validate_ticket called")
        target = self._check("validate_ticket")
        ticket = self._require(self._current_ticket, "current_ticket")

        ticket.validate()
        self._move_to(target)
        logger.info("Ticket validated. Expires at: %s", ticket.expiry_time)

    def expire_ticket(self) -> None:
        logger.info("expire_ticket called")
        target = self._check("expire_ticket")
        ticket = self._require(self._current_ticket, "current_ticket")
        if not ticket.active:
            raise TicketNotActiveError(ticket.id)

        ticket.expire()
        self._move_to(target)

    def cancel_purchase(self) -> None:
        logger.info("cancel_purchase called from state: %s", self._state.value)
        self._check("cancel_purchase")
        self._reset_extended_state()
        logger.info("Purchase cancelled. Session reset.")

    def reset(self) -> None:
        logger.info("reset called from state: %s", self._state.value)
        self._check("reset")
        self._reset_extended_state()
        logger.info("Session reset after ticket expiration.")

    # ---------------------
    # Views
    # ---------------------

    def snapshot(self) -> SessionSnapshot:
        ticket = self._current_ticket
        return SessionSnapshot(
            state=self._state,
            selected_ticket_type=self._selected_ticket_type,
            selected_payment_method=self._selected_payment_method,
            transaction_id=self._transaction_id,
            retry_count=self._retry_count,
            ticket=TicketSnapshot.from_ticket(ticket) if ticket is not None else None,
        )

    def __repr__(self) -> str:
        return (
            "PurchaseSession("
            f"state={self._state.value}, "
            f"ticket_type={self._selected_ticket_type.display_name if self._selected_ticket_type else None}, "
            f"payment_method={self._selected_payment_method.display_name if self._selected_payment_method else None}, "
            f"transaction_id={self._transaction_id!r}, "
            f"has_ticket={self._current_ticket is not None}, "
            f"retry_count={self._retry_count})"
        )

    # ---------------------
    # Internals
    # ---------------------

    def _check(self, operation: str) -> PurchaseState:
        PurchaseStateMachine.validate_operation(self._state, operation)
        return (
            PurchaseStateMachine.target_of(operation)
            if operation in PurchaseStateMachine.operations()
            else self._state
        )

    def _restore(self, previous: PurchaseState, reason: str) -> None:
        logger.warning("%s; restoring state %s", reason, previous.value)
        self._state = previous

    def _move_to(self, target: PurchaseState) -> None:
        previous = self._state
        self._state = target
        logger.info("State changed: %s -> %s", previous.value, target.value)

    @staticmethod
    def _require(value, field: str):
        if value is None:
            raise IncompleteSessionError(field)
        return value

    def _require_payment_details(self) -> None:
        self._require(self._selected_payment_method, "selected_payment_method")
        self._require(self._selected_ticket_type, "selected_ticket_type")

    def _apply_result(self, result: PaymentResult) -> bool:
        if result.success:
            self._record_success(
                result,
                PurchaseStateMachine.target_of("complete_payment_with_success"),
            )
            return True
        self._move_to(PurchaseStateMachine.target_of("complete_payment_with_failure"))
        logger.warning("Payment failed: %s. Retry count: %s", result.message, self._retry_count)
        return False

    def _record_success(self, result: PaymentResult, target: PurchaseState) -> None:
        self._transaction_id = result.transaction_id
        self._retry_count = 0
        self._move_to(target)
        logger.info("Payment successful. Transaction ID: %s", self._transaction_id)

    def _record_failure(self, target: PurchaseState, reason: str) -> None:
        # Capped: once the budget is spent the next retry_payment resets.
        self._retry_count = min(self._retry_count + 1, MAX_RETRY_COUNT)
        self._move_to(target)
        logger.warning("%s. Retry count: %s", reason, self._retry_count)

    def _reset_extended_state(self) -> None:
        self._selected_ticket_type: Optional[TicketType] = None
        self._selected_payment_method: Optional[PaymentMethod] = None
        self._transaction_id: Optional[str] = None
        self._current_ticket: Optional[Ticket] = None
        self._retry_count = 0
        self._state = PurchaseState.IDLE
        logger.debug("Session variables reset. State: %s", self._state.value)
