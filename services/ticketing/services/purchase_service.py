"""Servicio de compra (claim) de tickets"""
from datetime import datetime, timezone
import logging

from services.ticketing.models.ticket import TicketRecord, TicketStatus
from services.ticketing.stores.interfaces import TicketStore
from shared.errors import AlreadyPurchasedError, TicketNotFoundError

logger = logging.getLogger(__name__)


class PurchaseCoordinator:
    """
    Transición atómica Available -> Sold de un ticket

    La escritura es un compare-and-swap sobre el estado en el store; dos
    compras simultáneas del mismo ticket terminan en un éxito y un
    AlreadyPurchasedError.
    """

    def __init__(self, store: TicketStore) -> None:
        self.store = store

    async def purchase(self, ticket_id: str, buyer_user_id: str) -> TicketRecord:
        """
        Comprar un ticket

        Returns:
            El ticket vendido, con su qr_payload

        Raises:
            TicketNotFoundError: Si no existe o está inactivo
            AlreadyPurchasedError: Si ya estaba vendido o se perdió la carrera
        """
        ticket = await self.store.get_by_id(ticket_id)
        if ticket is None or not ticket.is_active:
            raise TicketNotFoundError(ticket_id)

        if ticket.is_purchased or ticket.status != TicketStatus.AVAILABLE:
            logger.info(f"Ticket {ticket_id} ya vendido")
            raise AlreadyPurchasedError(ticket_id)

        claimed = await self.store.conditional_update_status(
            ticket_id,
            TicketStatus.AVAILABLE,
            {
                "status": TicketStatus.SOLD,
                "is_purchased": True,
                "purchased_by_user_id": buyer_user_id,
                "purchase_date": datetime.now(timezone.utc),
            },
        )
        if not claimed:
            logger.info(f"Compra concurrente perdida para ticket {ticket_id}")
            raise AlreadyPurchasedError(ticket_id)

        sold = await self.store.get_by_id(ticket_id)
        logger.info(f"Ticket {sold.ticket_number} vendido a {buyer_user_id}")
        return sold
