"""Ticket store en memoria (un solo proceso, desarrollo y tests)"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.ticketing.models.ticket import TicketFilter, TicketRecord, TicketStatus
from services.ticketing.stores.interfaces import TicketStore, check_mutable_fields, matches_filter
from shared.errors import StorageConflictError


class InMemoryTicketStore(TicketStore):
    """
    Store en memoria para un único event loop.

    Las operaciones de escritura no tienen ningún await entre la lectura y la
    escritura, así que son atómicas respecto a otras corrutinas.
    """

    def __init__(self) -> None:
        self._tickets: Dict[str, TicketRecord] = {}
        self._numbers: Dict[str, str] = {}  # ticket_number -> id

    async def create_many(self, tickets: List[TicketRecord]) -> None:
        batch_ids = set()
        batch_numbers = set()
        for ticket in tickets:
            if ticket.id in self._tickets or ticket.id in batch_ids:
                raise StorageConflictError(f"id duplicado {ticket.id}")
            if ticket.ticket_number in self._numbers or ticket.ticket_number in batch_numbers:
                raise StorageConflictError(f"ticket_number duplicado {ticket.ticket_number}")
            batch_ids.add(ticket.id)
            batch_numbers.add(ticket.ticket_number)

        for ticket in tickets:
            self._tickets[ticket.id] = ticket.model_copy()
            self._numbers[ticket.ticket_number] = ticket.id

    async def get_by_id(self, ticket_id: str) -> Optional[TicketRecord]:
        ticket = self._tickets.get(ticket_id)
        return ticket.model_copy() if ticket else None

    async def get_by_event(
        self,
        event_id: str,
        filters: Optional[TicketFilter] = None
    ) -> List[TicketRecord]:
        filters = filters or TicketFilter()
        tickets = [
            t.model_copy() for t in self._tickets.values()
            if t.event_id == event_id and matches_filter(t, filters)
        ]
        return sorted(tickets, key=lambda t: t.ticket_number)

    async def list_by_purchaser(self, user_id: str) -> List[TicketRecord]:
        tickets = [
            t.model_copy() for t in self._tickets.values()
            if t.is_active and t.is_purchased and t.purchased_by_user_id == user_id
        ]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(tickets, key=lambda t: t.purchase_date or oldest, reverse=True)

    async def conditional_update_status(
        self,
        ticket_id: str,
        expected_status: TicketStatus,
        fields: Dict[str, Any]
    ) -> bool:
        check_mutable_fields(fields)
        current = self._tickets.get(ticket_id)
        if current is None or not current.is_active or current.status != expected_status:
            return False
        self._tickets[ticket_id] = current.model_copy(update=fields)
        return True

    async def deactivate(self, ticket_id: str) -> bool:
        current = self._tickets.get(ticket_id)
        if current is None or not current.is_active:
            return False
        self._tickets[ticket_id] = current.model_copy(update={"is_active": False})
        return True
