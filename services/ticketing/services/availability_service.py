"""Consulta de disponibilidad de tickets"""
from typing import List

from services.ticketing.models.ticket import TicketFilter, TicketRecord
from services.ticketing.stores.interfaces import TicketStore


def availability_sort_key(ticket: TicketRecord):
    # Precio, luego tipo; el número desempata para que el orden sea reproducible
    return (ticket.price, ticket.ticket_type.value, ticket.ticket_number)


class AvailabilityQuery:
    """Tickets activos, sin comprar y en estado Available de un evento"""

    def __init__(self, store: TicketStore) -> None:
        self.store = store

    async def available_for_event(self, event_id: str) -> List[TicketRecord]:
        tickets = await self.store.get_by_event(event_id, TicketFilter.available())
        # El store ya filtra; se revalida para no exponer nunca un ticket vendido
        available = [t for t in tickets if t.is_available]
        available.sort(key=availability_sort_key)
        # Un QR sin comprar no debe poder verse ni adivinarse
        return [t.model_copy(update={"qr_payload": ""}) for t in available]
