# src/domain/catalog.py

import random
from datetime import timedelta
from enum import Enum
from typing import Optional


class TicketType(str, Enum):
    """
    Ticket products on sale. Each carries its validity period,
    its price in HUF and a display name.
    """

    SINGLE = "SINGLE"
    DAY_PASS = "DAY_PASS"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @property
    def validity_minutes(self) -> int:
        return _TICKET_TYPE_DETAILS[self][0]

    @property
    def validity(self) -> timedelta:
        return timedelta(minutes=self.validity_minutes)

    @property
    def price_huf(self) -> int:
        return _TICKET_TYPE_DETAILS[self][1]

    @property
    def display_name(self) -> str:
        return _TICKET_TYPE_DETAILS[self][2]

    @classmethod
    def random(cls, rng: Optional[random.Random] = None) -> "TicketType":
        return (rng or random.Random()).choice(list(cls))

    def describe(self) -> str:
        return f"{self.display_name} ({self.validity_minutes} min, {self.price_huf} HUF)"


_TICKET_TYPE_DETAILS = {
    TicketType.SINGLE: (80, 350, "Single Ticket"),
    TicketType.DAY_PASS: (1440, 1650, "Day Pass"),
    TicketType.WEEKLY: (10080, 4950, "Weekly Pass"),
    TicketType.MONTHLY: (43200, 9500, "Monthly Pass"),
}


class PaymentMethod(str, Enum):
    CARD = "card"
    GOOGLE_PAY = "google_pay"
    APPLE_PAY = "apple_pay"

    @property
    def identifier(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return _PAYMENT_METHOD_NAMES[self]

    @classmethod
    def random(cls, rng: Optional[random.Random] = None) -> "PaymentMethod":
        return (rng or random.Random()).choice(list(cls))


_PAYMENT_METHOD_NAMES = {
    PaymentMethod.CARD: "Credit/Debit Card",
    PaymentMethod.GOOGLE_PAY: "Google Pay",
    PaymentMethod.APPLE_PAY: "Apple Pay",
}
