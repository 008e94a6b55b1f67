# src/domain/ticket.py

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from src.domain.catalog import TicketType
from src.domain.exceptions import (
    InvalidArgumentError,
    TicketAlreadyActiveError,
    TicketNotActiveError,
)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Ticket:
    """
    A purchased ticket.

    Created inactive once payment succeeded; validation starts the
    validity window and expiry closes it. An expired ticket keeps its
    timestamps for reading but is never mutated again.
    """

    def __init__(
        self,
        ticket_type: TicketType,
        transaction_id: str,
        clock: Clock = utc_now,
    ):
        if not isinstance(ticket_type, TicketType):
            raise InvalidArgumentError("ticket_type")
        if not transaction_id or not transaction_id.strip():
            raise InvalidArgumentError("transaction_id", "cannot be null or empty")

        self._clock = clock
        self._id = str(uuid4())
        self._type = ticket_type
        self._transaction_id = transaction_id
        self._qr_code = f"QR-{self._id[:8]}-{transaction_id[:8]}"
        self._purchase_time = clock()

        self.validation_time: Optional[datetime] = None
        self.expiry_time: Optional[datetime] = None
        self.active = False
        self._expired = False

    # Identity is fixed at construction.

    @property
    def id(self) -> str:
        return self._id

    @property
    def type(self) -> TicketType:
        return self._type

    @property
    def transaction_id(self) -> str:
        return self._transaction_id

    @property
    def qr_code(self) -> str:
        return self._qr_code

    @property
    def purchase_time(self) -> datetime:
        return self._purchase_time

    def validate(self) -> None:
        if self.active:
            raise TicketAlreadyActiveError(self.id)
        if self._expired:
            # An expired ticket cannot be brought back to life.
            raise TicketNotActiveError(self.id)

        self.validation_time = self._clock()
        self.expiry_time = self.validation_time + self.type.validity
        self.active = True

    def expire(self) -> None:
        if not self.active:
            raise TicketNotActiveError(self.id)
        self.active = False
        self._expired = True

    def is_expired(self) -> bool:
        """True when the ticket is still flagged active but its window has passed."""
        if not self.active or self.expiry_time is None:
            return False
        return self._clock() > self.expiry_time

    def remaining_validity(self) -> timedelta:
        if not self.active or self.expiry_time is None:
            return timedelta(0)
        return max(timedelta(0), self.expiry_time - self._clock())

    def remaining_minutes(self) -> int:
        return int(self.remaining_validity().total_seconds() // 60)

    def __repr__(self) -> str:
        parts = [
            f"id='{self.id[:8]}...'",
            f"type={self.type.display_name}",
            f"qr_code='{self.qr_code}'",
            f"purchased={self.purchase_time:%Y-%m-%d %H:%M:%S}",
        ]
        if self.active:
            parts.append("active=True")
            parts.append(f"remaining={self.remaining_minutes()} min")
        else:
            parts.append("active=False")
        return f"Ticket({', '.join(parts)})"
