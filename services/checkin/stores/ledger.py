"""Ledger durable de check-ins

Una entrada por ticket_id. La inserción es el punto de commit atómico del
check-in: un segundo intento concurrente sobre el mismo ticket la ve y falla.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.checkin.models.checkin import CheckInEntry
from shared.database.models import TicketCheckIn

logger = logging.getLogger(__name__)


class CheckInLedger(ABC):
    """Interfaz del ledger de ingresos"""

    @abstractmethod
    async def add(self, ticket_id: str) -> Optional[CheckInEntry]:
        """Insertar el ticket. None si ya estaba registrado."""
        ...

    @abstractmethod
    async def contains(self, ticket_id: str) -> bool:
        ...

    @abstractmethod
    async def list_entries(self) -> List[CheckInEntry]:
        """Entradas en orden de ingreso"""
        ...

    async def list_ids(self) -> List[str]:
        return [entry.ticket_id for entry in await self.list_entries()]

    @abstractmethod
    async def clear(self) -> List[str]:
        """Borrado masivo (acción de operador). Devuelve los IDs eliminados."""
        ...


class InMemoryCheckInLedger(CheckInLedger):
    """Ledger en memoria para un único event loop (sin await entre chequeo e inserción)"""

    def __init__(self) -> None:
        self._entries: Dict[str, CheckInEntry] = {}

    async def add(self, ticket_id: str) -> Optional[CheckInEntry]:
        if ticket_id in self._entries:
            return None
        entry = CheckInEntry(ticket_id=ticket_id, checked_in_at=datetime.now(timezone.utc))
        self._entries[ticket_id] = entry
        return entry

    async def contains(self, ticket_id: str) -> bool:
        return ticket_id in self._entries

    async def list_entries(self) -> List[CheckInEntry]:
        return list(self._entries.values())

    async def clear(self) -> List[str]:
        cleared = list(self._entries)
        self._entries.clear()
        return cleared


class SqlCheckInLedger(CheckInLedger):
    """Ledger sobre la tabla `ticket_checkins` (ticket_id es la primary key)"""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def add(self, ticket_id: str) -> Optional[CheckInEntry]:
        checked_in_at = datetime.now(timezone.utc)
        # INSERT directo: la primary key decide la carrera en la base de datos
        stmt = insert(TicketCheckIn).values(ticket_id=ticket_id, checked_in_at=checked_in_at)
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except IntegrityError:
            # Otro check-in del mismo ticket llegó antes
            await self.db.rollback()
            return None
        return CheckInEntry(ticket_id=ticket_id, checked_in_at=checked_in_at)

    async def contains(self, ticket_id: str) -> bool:
        stmt = select(TicketCheckIn.ticket_id).where(TicketCheckIn.ticket_id == ticket_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_entries(self) -> List[CheckInEntry]:
        stmt = select(TicketCheckIn.ticket_id, TicketCheckIn.checked_in_at).order_by(
            TicketCheckIn.checked_in_at, TicketCheckIn.ticket_id
        )
        result = await self.db.execute(stmt)
        return [
            CheckInEntry(ticket_id=ticket_id, checked_in_at=checked_in_at)
            for ticket_id, checked_in_at in result.all()
        ]

    async def clear(self) -> List[str]:
        result = await self.db.execute(select(TicketCheckIn.ticket_id))
        cleared = list(result.scalars().all())
        await self.db.execute(delete(TicketCheckIn))
        await self.db.commit()
        logger.info(f"Ledger de check-in reiniciado ({len(cleared)} entradas)")
        return cleared
