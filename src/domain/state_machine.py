# src/domain/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Set, Tuple

from src.domain.exceptions import InvalidTransitionError


MAX_RETRY_COUNT = 3


class PurchaseState(str, Enum):
    IDLE = "IDLE"
    TICKET_SELECTED = "TICKET_SELECTED"
    PAYMENT_METHOD_SELECTED = "PAYMENT_METHOD_SELECTED"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    QR_GENERATED = "QR_GENERATED"
    TICKET_ACTIVE = "TICKET_ACTIVE"
    TICKET_EXPIRED = "TICKET_EXPIRED"
    # Reserved for unrecoverable conditions; no operation leads here.
    ERROR = "ERROR"


# States in which the session holds a transaction id / a ticket.
PAID_STATES: FrozenSet[PurchaseState] = frozenset({
    PurchaseState.PAYMENT_SUCCESS,
    PurchaseState.QR_GENERATED,
    PurchaseState.TICKET_ACTIVE,
    PurchaseState.TICKET_EXPIRED,
})
TICKETED_STATES: FrozenSet[PurchaseState] = frozenset({
    PurchaseState.QR_GENERATED,
    PurchaseState.TICKET_ACTIVE,
    PurchaseState.TICKET_EXPIRED,
})


class PurchaseStateMachine:
    """
    Central lifecycle table for a purchase session.
    Maps every operation to the states it may start from
    and the state it leads to.
    """

    _OPERATIONS: Dict[str, Tuple[FrozenSet[PurchaseState], PurchaseState]] = {
        "select_ticket_type": (
            frozenset({PurchaseState.IDLE}),
            PurchaseState.TICKET_SELECTED,
        ),
        "choose_payment_method": (
            frozenset({PurchaseState.TICKET_SELECTED}),
            PurchaseState.PAYMENT_METHOD_SELECTED,
        ),
        "initiate_payment_processing": (
            frozenset({PurchaseState.PAYMENT_METHOD_SELECTED}),
            PurchaseState.PAYMENT_PROCESSING,
        ),
        "complete_payment_with_success": (
            frozenset({PurchaseState.PAYMENT_PROCESSING}),
            PurchaseState.PAYMENT_SUCCESS,
        ),
        "complete_payment_with_failure": (
            frozenset({PurchaseState.PAYMENT_PROCESSING}),
            PurchaseState.PAYMENT_FAILED,
        ),
        "retry_payment": (
            frozenset({PurchaseState.PAYMENT_FAILED}),
            PurchaseState.PAYMENT_METHOD_SELECTED,
        ),
        "generate_qr_code": (
            frozenset({PurchaseState.PAYMENT_SUCCESS}),
            PurchaseState.QR_GENERATED,
        ),
        "validate_ticket": (
            frozenset({PurchaseState.QR_GENERATED}),
            PurchaseState.TICKET_ACTIVE,
        ),
        "expire_ticket": (
            frozenset({PurchaseState.TICKET_ACTIVE}),
            PurchaseState.TICKET_EXPIRED,
        ),
        "cancel_purchase": (
            frozenset({
                PurchaseState.TICKET_SELECTED,
                PurchaseState.PAYMENT_METHOD_SELECTED,
                PurchaseState.PAYMENT_FAILED,
            }),
            PurchaseState.IDLE,
        ),
        "reset": (
            frozenset({PurchaseState.TICKET_EXPIRED}),
            PurchaseState.IDLE,
        ),
    }

    # process_payment composes initiate + complete; its outcome depends on
    # the gateway so it has two possible targets.
    _COMPOSITE_OPERATIONS: Dict[str, Tuple[FrozenSet[PurchaseState], FrozenSet[PurchaseState]]] = {
        "process_payment": (
            frozenset({PurchaseState.PAYMENT_METHOD_SELECTED}),
            frozenset({PurchaseState.PAYMENT_SUCCESS, PurchaseState.PAYMENT_FAILED}),
        ),
        "process_payment_async": (
            frozenset({PurchaseState.PAYMENT_METHOD_SELECTED}),
            frozenset({PurchaseState.PAYMENT_SUCCESS, PurchaseState.PAYMENT_FAILED}),
        ),
    }

    @classmethod
    def operations(cls) -> Tuple[str, ...]:
        return tuple(cls._OPERATIONS)

    @classmethod
    def can_perform(cls, state: PurchaseState, operation: str) -> bool:
        """
        Returns True if the operation may be invoked in this state.
        """
        cls._ensure_valid_state(state)
        sources = cls._sources_for(operation)
        return state in sources

    @classmethod
    def validate_operation(cls, state: PurchaseState, operation: str) -> None:
        """
        Raises InvalidTransitionError if the operation is illegal in this state.
        """
        if not cls.can_perform(state, operation):
            raise InvalidTransitionError(
                from_state=state.value,
                attempted=operation,
            )

    @classmethod
    def target_of(cls, operation: str) -> PurchaseState:
        if operation not in cls._OPERATIONS:
            raise KeyError(f"Unknown operation: {operation}")
        return cls._OPERATIONS[operation][1]

    @classmethod
    def get_allowed_operations(cls, state: PurchaseState) -> Set[str]:
        """
        Returns the operations that may be invoked from this state.
        """
        cls._ensure_valid_state(state)
        allowed = {
            name
            for name, (sources, _) in cls._OPERATIONS.items()
            if state in sources
        }
        allowed.update(
            name
            for name, (sources, _) in cls._COMPOSITE_OPERATIONS.items()
            if state in sources
        )
        return allowed

    @classmethod
    def get_allowed_transitions(cls, state: PurchaseState) -> Set[PurchaseState]:
        """
        Returns reachable next states from this state.
        """
        cls._ensure_valid_state(state)
        targets = {
            target
            for sources, target in cls._OPERATIONS.values()
            if state in sources
        }
        # Retry exhaustion resets the session instead of retrying.
        if state is PurchaseState.PAYMENT_FAILED:
            targets.add(PurchaseState.IDLE)
        return targets

    @classmethod
    def can_transition(cls, from_state: PurchaseState, to_state: PurchaseState) -> bool:
        cls._ensure_valid_state(to_state)
        return to_state in cls.get_allowed_transitions(from_state)

    @classmethod
    def is_terminal(cls, state: PurchaseState) -> bool:
        """
        Returns True if no operation leaves this state.
        """
        return len(cls.get_allowed_operations(state)) == 0

    @classmethod
    def _sources_for(cls, operation: str) -> FrozenSet[PurchaseState]:
        if operation in cls._OPERATIONS:
            return cls._OPERATIONS[operation][0]
        if operation in cls._COMPOSITE_OPERATIONS:
            return cls._COMPOSITE_OPERATIONS[operation][0]
        raise KeyError(f"Unknown operation: {operation}")

    @staticmethod
    def _ensure_valid_state(state: PurchaseState) -> None:
        if not isinstance(state, PurchaseState):
            raise TypeError(
                f"Expected PurchaseState, got {type(state)}"
            )
