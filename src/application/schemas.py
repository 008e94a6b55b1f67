from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.domain.catalog import PaymentMethod, TicketType
from src.domain.state_machine import MAX_RETRY_COUNT, PurchaseState


class TicketSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: TicketType
    qr_code: str = Field(pattern=r"^QR-[0-9a-f]{8}-[A-Za-z0-9-]{1,8}$")
    transaction_id: str
    purchase_time: datetime
    validation_time: Optional[datetime] = None
    expiry_time: Optional[datetime] = None
    active: bool

    @classmethod
    def from_ticket(cls, ticket) -> "TicketSnapshot":
        return cls(
            id=ticket.id,
            type=ticket.type,
            qr_code=ticket.qr_code,
            transaction_id=ticket.transaction_id,
            purchase_time=ticket.purchase_time,
            validation_time=ticket.validation_time,
            expiry_time=ticket.expiry_time,
            active=ticket.active,
        )


class SessionSnapshot(BaseModel):
    """Read-only view of a purchase session for UI layers and test drivers."""

    model_config = ConfigDict(frozen=True)

    state: PurchaseState
    selected_ticket_type: Optional[TicketType] = None
    selected_payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    retry_count: int = Field(ge=0, le=MAX_RETRY_COUNT)
    ticket: Optional[TicketSnapshot] = None
