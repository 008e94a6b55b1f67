import logging
import sys

from src.application.purchase_service import PurchaseSession
from src.domain.catalog import PaymentMethod, TicketType
from src.domain.exceptions import MaxRetriesExceededError
from src.infrastructure.config import LOG_LEVEL
from src.infrastructure.payment_gateway import PaymentGateway


logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def purchase_ticket(
    session: PurchaseSession,
    ticket_type: TicketType = TicketType.SINGLE,
    method: PaymentMethod = PaymentMethod.CARD,
) -> bool:
    """
    Runs one purchase up to an active ticket.

    Declined payments are retried until the retry budget runs out,
    in which case the session is back in IDLE and False is returned.
    """
    session.select_ticket_type(ticket_type)
    session.choose_payment_method(method)

    attempt = 1
    while not session.process_payment():
        try:
            session.retry_payment()
        except MaxRetriesExceededError:
            logger.exception("Purchase abandoned after %s payment attempts.", attempt)
            return False
        attempt += 1
        logger.warning("Payment declined. Retrying (attempt %s)...", attempt)

    session.generate_qr_code()
    session.validate_ticket()
    ticket = session.current_ticket
    logger.info(
        "Ticket %s active until %s (%s min left).",
        ticket.qr_code,
        ticket.expiry_time,
        ticket.remaining_minutes(),
    )
    return True


def main() -> int:
    configure_logging()
    session = PurchaseSession(gateway=PaymentGateway.from_settings())
    if not purchase_ticket(session):
        return 1

    session.expire_ticket()
    session.reset()
    return 0


if __name__ == "__main__":
    sys.exit(main())
