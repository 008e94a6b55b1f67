# src/domain/payment.py

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentErrorKind(str, Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_CARD = "INVALID_CARD"
    DECLINED = "DECLINED"
    INVALID_METHOD = "INVALID_METHOD"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES = {
    PaymentErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds in account",
    PaymentErrorKind.NETWORK_ERROR: "Network connection error",
    PaymentErrorKind.TIMEOUT: "Payment request timeout",
    PaymentErrorKind.INVALID_CARD: "Invalid card details",
    PaymentErrorKind.DECLINED: "Payment declined by bank",
    PaymentErrorKind.INVALID_METHOD: "Invalid payment method",
    PaymentErrorKind.INVALID_AMOUNT: "Invalid amount",
}

# Kinds the gateway may draw when a well-formed payment is rejected.
RANDOM_FAILURE_KINDS = (
    PaymentErrorKind.INSUFFICIENT_FUNDS,
    PaymentErrorKind.NETWORK_ERROR,
    PaymentErrorKind.TIMEOUT,
    PaymentErrorKind.INVALID_CARD,
    PaymentErrorKind.DECLINED,
)

TRANSACTION_ID_PATTERN = r"^TX-[A-Z0-9]{8}$"


class PaymentResult(BaseModel):
    """Outcome of a single gateway call."""

    model_config = ConfigDict(frozen=True)

    success: bool
    transaction_id: Optional[str] = Field(default=None, pattern=TRANSACTION_ID_PATTERN)
    message: str
    error_kind: Optional[PaymentErrorKind] = None

    @classmethod
    def succeeded(cls, transaction_id: str) -> "PaymentResult":
        return cls(
            success=True,
            transaction_id=transaction_id,
            message="Payment completed successfully",
        )

    @classmethod
    def failed(cls, kind: PaymentErrorKind) -> "PaymentResult":
        return cls(success=False, message=kind.message, error_kind=kind)
