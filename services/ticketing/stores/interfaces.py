"""Interfaces de almacenamiento de tickets (patrón repositorio)

Los stores son intercambiables y devuelven modelos de dominio (TicketRecord).
Toda implementación debe garantizar que:
- create_many es todo-o-nada y respeta la unicidad de ticket_number
- conditional_update_status es una sola operación atómica (compare-and-swap)
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from services.ticketing.models.ticket import TicketFilter, TicketRecord, TicketStatus

# Campos que una actualización condicional puede modificar
MUTABLE_FIELDS = frozenset({
    "status",
    "is_purchased",
    "purchased_by_user_id",
    "purchase_date",
    "ticket_type",
    "price",
})


def check_mutable_fields(fields: Dict[str, Any]) -> None:
    invalid = set(fields) - MUTABLE_FIELDS
    if invalid:
        raise ValueError(f"Campos no modificables: {', '.join(sorted(invalid))}")


def matches_filter(ticket: TicketRecord, filters: TicketFilter) -> bool:
    """Evaluar un TicketFilter sobre un ticket en memoria"""
    if filters.is_active is not None and ticket.is_active != filters.is_active:
        return False
    if filters.is_purchased is not None and ticket.is_purchased != filters.is_purchased:
        return False
    if filters.status is not None and ticket.status != filters.status:
        return False
    if filters.ticket_type is not None and ticket.ticket_type != filters.ticket_type:
        return False
    if filters.ticket_number and filters.ticket_number not in ticket.ticket_number:
        return False
    if filters.query:
        haystack = (ticket.ticket_number, ticket.ticket_type.value, ticket.status.value)
        if not any(filters.query in value for value in haystack):
            return False
    return True


class TicketStore(ABC):
    """Interfaz para persistencia de tickets"""

    @abstractmethod
    async def create_many(self, tickets: List[TicketRecord]) -> None:
        """Guardar un lote completo o nada.

        Raises:
            StorageConflictError: Si algún id o ticket_number ya existe.
        """
        ...

    async def create(self, ticket: TicketRecord) -> None:
        await self.create_many([ticket])

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[TicketRecord]:
        """Devolver un ticket por ID (activo o no), o None si no existe."""
        ...

    @abstractmethod
    async def get_by_event(
        self,
        event_id: str,
        filters: Optional[TicketFilter] = None
    ) -> List[TicketRecord]:
        """Devolver los tickets del evento que cumplen el filtro, ordenados por ticket_number."""
        ...

    @abstractmethod
    async def list_by_purchaser(self, user_id: str) -> List[TicketRecord]:
        """Devolver los tickets activos comprados por un usuario, la compra más reciente primero."""
        ...

    @abstractmethod
    async def conditional_update_status(
        self,
        ticket_id: str,
        expected_status: TicketStatus,
        fields: Dict[str, Any]
    ) -> bool:
        """Aplicar `fields` solo si el ticket está activo y sigue en `expected_status`.

        Returns:
            True si se escribió, False si la precondición no se cumplió.
        """
        ...

    @abstractmethod
    async def deactivate(self, ticket_id: str) -> bool:
        """Soft delete. False si el ticket no existe o ya estaba inactivo."""
        ...
