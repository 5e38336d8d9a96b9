"""Servicio de catálogo: lectura, edición y baja de tickets"""
from decimal import Decimal
from typing import List, Optional
import logging

from services.ticketing.models.ticket import TicketFilter, TicketRecord, TicketStatus
from services.ticketing.services.issuer_service import parse_price, parse_ticket_type
from services.ticketing.stores.interfaces import TicketStore
from shared.errors import AlreadyPurchasedError, TicketNotFoundError

logger = logging.getLogger(__name__)


class TicketCatalog:
    """Operaciones de gestión sobre tickets ya emitidos"""

    def __init__(self, store: TicketStore) -> None:
        self.store = store

    async def get_ticket(self, ticket_id: str) -> TicketRecord:
        ticket = await self.store.get_by_id(ticket_id)
        if ticket is None or not ticket.is_active:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list_for_event(
        self,
        event_id: str,
        filters: Optional[TicketFilter] = None
    ) -> List[TicketRecord]:
        filters = filters or TicketFilter()
        # Las bajas lógicas nunca se listan
        filters = filters.model_copy(update={"is_active": True})
        return await self.store.get_by_event(event_id, filters)

    async def list_purchased_by(self, user_id: str) -> List[TicketRecord]:
        """Tickets comprados por un usuario (mis compras)"""
        return await self.store.list_by_purchaser(user_id)

    async def update_ticket(
        self,
        ticket_id: str,
        ticket_type: str,
        price: Decimal
    ) -> TicketRecord:
        """
        Cambiar tipo y precio de un ticket todavía sin vender

        El qr_payload no se regenera.

        Raises:
            InvalidTicketTypeError: Si el tipo no pertenece al conjunto cerrado
            InvalidTicketRequestError: Si el precio es negativo o no entra en Numeric(12, 2)
            TicketNotFoundError: Si no existe o está inactivo
            AlreadyPurchasedError: Si el ticket ya fue vendido
        """
        new_type = parse_ticket_type(ticket_type)
        price = parse_price(price)

        await self.get_ticket(ticket_id)
        updated = await self.store.conditional_update_status(
            ticket_id,
            TicketStatus.AVAILABLE,
            {"ticket_type": new_type, "price": price},
        )
        if not updated:
            # Se vendió (o se dio de baja) entre la lectura y la escritura
            current = await self.store.get_by_id(ticket_id)
            if current is None or not current.is_active:
                raise TicketNotFoundError(ticket_id)
            raise AlreadyPurchasedError(ticket_id)

        logger.info(f"Ticket {ticket_id} actualizado: {new_type.value} {price}")
        return await self.store.get_by_id(ticket_id)

    async def deactivate_ticket(self, ticket_id: str) -> None:
        """Baja lógica; el ticket se conserva para auditoría"""
        if not await self.store.deactivate(ticket_id):
            raise TicketNotFoundError(ticket_id)
        logger.info(f"Ticket {ticket_id} dado de baja")
