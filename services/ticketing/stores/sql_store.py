"""Ticket store sobre SQLAlchemy (PostgreSQL / SQLite)"""
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import Ticket
from shared.errors import StorageConflictError
from services.ticketing.models.ticket import TicketFilter, TicketRecord, TicketStatus
from services.ticketing.stores.interfaces import TicketStore, check_mutable_fields

logger = logging.getLogger(__name__)


def _to_record(row: Ticket) -> TicketRecord:
    return TicketRecord.model_validate(row)


def _column_values(values: Dict[str, Any]) -> Dict[str, Any]:
    """Los enums se guardan por su valor"""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


class SqlTicketStore(TicketStore):
    """Store de tickets respaldado por la tabla `tickets`"""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create_many(self, tickets: List[TicketRecord]) -> None:
        rows = [Ticket(**_column_values(t.model_dump())) for t in tickets]
        self.db.add_all(rows)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Lote de {len(rows)} tickets rechazado por unicidad: {e.orig}")
            raise StorageConflictError("ticket_number o id duplicado") from e

    async def get_by_id(self, ticket_id: str) -> Optional[TicketRecord]:
        stmt = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_record(row) if row else None

    async def get_by_event(
        self,
        event_id: str,
        filters: Optional[TicketFilter] = None
    ) -> List[TicketRecord]:
        filters = filters or TicketFilter()
        stmt = select(Ticket).where(Ticket.event_id == event_id)

        if filters.is_active is not None:
            stmt = stmt.where(Ticket.is_active.is_(filters.is_active))
        if filters.is_purchased is not None:
            stmt = stmt.where(Ticket.is_purchased.is_(filters.is_purchased))
        if filters.status is not None:
            stmt = stmt.where(Ticket.status == filters.status.value)
        if filters.ticket_type is not None:
            stmt = stmt.where(Ticket.ticket_type == filters.ticket_type.value)
        if filters.ticket_number:
            stmt = stmt.where(Ticket.ticket_number.contains(filters.ticket_number, autoescape=True))
        if filters.query:
            stmt = stmt.where(
                or_(
                    Ticket.ticket_number.contains(filters.query, autoescape=True),
                    Ticket.ticket_type.contains(filters.query, autoescape=True),
                    Ticket.status.contains(filters.query, autoescape=True),
                )
            )

        stmt = stmt.order_by(Ticket.ticket_number).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def list_by_purchaser(self, user_id: str) -> List[TicketRecord]:
        stmt = (
            select(Ticket)
            .where(
                Ticket.purchased_by_user_id == user_id,
                Ticket.is_purchased.is_(True),
                Ticket.is_active.is_(True),
            )
            .order_by(Ticket.purchase_date.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def conditional_update_status(
        self,
        ticket_id: str,
        expected_status: TicketStatus,
        fields: Dict[str, Any]
    ) -> bool:
        check_mutable_fields(fields)
        # Un solo UPDATE con la precondición en el WHERE: la base de datos decide la carrera
        stmt = (
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status == expected_status.value,
                Ticket.is_active.is_(True),
            )
            .values(**_column_values(fields))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def deactivate(self, ticket_id: str) -> bool:
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id, Ticket.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1
