

class TicketingError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticket purchase engine.
    """


class InvalidTransitionError(TicketingError):
    """
    Raised when an operation is attempted outside its precondition state.
    """

    def __init__(self, from_state: str, attempted: str):
        self.from_state = from_state
        self.attempted = attempted

        message = (
            f"Illegal operation attempted: "
            f"{attempted} in state {from_state}"
        )
        super().__init__(message)


class InvalidArgumentError(TicketingError):
    """Raised when an operation receives a missing or malformed argument."""

    def __init__(self, field: str, reason: str = "must be provided"):
        self.field = field
        super().__init__(f"Invalid argument '{field}': {reason}")


class IncompleteSessionError(TicketingError):
    """Raised when extended state required by an operation is missing."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Session is missing required data: {field}")


class TicketAlreadyActiveError(TicketingError):
    """Raised when validating a ticket that is already active."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket is already validated. Ticket ID: {ticket_id}")


class TicketNotActiveError(TicketingError):
    """Raised when expiring a ticket that is not active."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Cannot expire inactive ticket. Ticket ID: {ticket_id}")


class MaxRetriesExceededError(TicketingError):
    """
    Raised when a retry would exceed the retry budget.

    Unlike every other error here, the session has already been reset
    to IDLE by the time this is raised.
    """

    def __init__(self, max_retries: int):
        self.max_retries = max_retries
        super().__init__(
            f"Maximum retry attempts ({max_retries}) exceeded. Purchase cancelled."
        )


class GatewayError(TicketingError):
    """Raised when the gateway reports a failure where success was required."""

    def __init__(self, kind, message: str):
        self.kind = kind
        super().__init__(
            f"Payment gateway returned failure when expecting success: {message}"
        )
