"""Servicio de validación y registro de ingreso (check-in) por QR"""
from datetime import datetime, timezone
from typing import List, Union
import logging

from redis.exceptions import RedisError

from app.core.config import settings
from services.checkin.models.checkin import CheckInEntry, CheckInExport, ValidationResult
from services.checkin.stores.ledger import CheckInLedger
from services.ticketing.models.ticket import TicketIdentity
from services.ticketing.services import qr_payload
from shared.cache.redis_client import cache_delete, cache_get, cache_set
from shared.errors import AlreadyCheckedInError, ErrorCode, MalformedPayloadError, PayloadError

logger = logging.getLogger(__name__)

MESSAGE_READY = "Ticket válido - listo para el check-in"
MESSAGE_CHECKED_IN = "Check-in registrado"


def seen_cache_key(ticket_id: str) -> str:
    return f"checkin:seen:{ticket_id}"


class CheckInValidator:
    """
    Valida tickets leídos en la puerta y registra su ingreso

    El ledger es la fuente de verdad. Redis guarda una marca "ya visto" que
    solo es una pista: validate la confirma contra el ledger y borra las
    marcas que el ledger no respalda. Nunca decide un check-in.
    """

    def __init__(self, ledger: CheckInLedger, use_cache: bool = True) -> None:
        self.ledger = ledger
        self.use_cache = use_cache

    async def _cache_seen(self, ticket_id: str) -> bool:
        if not self.use_cache:
            return False
        try:
            return bool(await cache_get(seen_cache_key(ticket_id)))
        except (RedisError, OSError) as e:
            logger.warning(f"Cache de check-in no disponible: {e}")
            return False

    async def _cache_mark(self, ticket_id: str) -> None:
        if not self.use_cache:
            return
        try:
            await cache_set(seen_cache_key(ticket_id), True, expire=settings.CHECKIN_CACHE_TTL)
        except (RedisError, OSError) as e:
            logger.warning(f"No se pudo marcar {ticket_id} en cache: {e}")

    async def _cache_forget(self, ticket_ids: List[str]) -> None:
        if not self.use_cache or not ticket_ids:
            return
        try:
            await cache_delete(*(seen_cache_key(t) for t in ticket_ids))
        except (RedisError, OSError) as e:
            logger.warning(f"No se pudo limpiar el cache de check-in: {e}")

    async def validate(self, decoded: Union[TicketIdentity, str]) -> ValidationResult:
        """
        Determinar si un ticket decodificado puede ingresar

        Acepta la identidad completa o un ID en bruto (QR legacy).
        """
        if isinstance(decoded, TicketIdentity):
            ticket_id, ticket, is_raw = decoded.ticket_id, decoded, False
        else:
            ticket_id, ticket, is_raw = decoded.strip(), None, True

        if not ticket_id:
            error = MalformedPayloadError("el QR no contiene datos")
            return ValidationResult(ok=False, reason=error.code, message=error.message)

        seen = await self._cache_seen(ticket_id)
        checked_in = await self.ledger.contains(ticket_id)
        if seen and not checked_in:
            # Marca vieja (p. ej. un reset con Redis caído): manda el ledger
            logger.info(f"Marca de cache sin respaldo en el ledger para {ticket_id}, se descarta")
            await self._cache_forget([ticket_id])
        elif checked_in and not seen:
            await self._cache_mark(ticket_id)

        if checked_in:
            return ValidationResult(
                ok=False,
                ticket_id=ticket_id,
                reason=ErrorCode.ALREADY_CHECKED_IN,
                message=AlreadyCheckedInError(ticket_id).message,
                ticket=ticket,
                is_raw=is_raw,
            )

        return ValidationResult(
            ok=True,
            ticket_id=ticket_id,
            message=MESSAGE_READY,
            ticket=ticket,
            is_raw=is_raw,
        )

    async def validate_payload(self, payload: str) -> ValidationResult:
        """Decodificar el texto de un QR y validarlo; los errores de formato son un resultado negativo"""
        try:
            decoded = qr_payload.decode_scanned(payload)
        except PayloadError as e:
            return ValidationResult(ok=False, reason=e.code, message=e.message)
        return await self.validate(decoded)

    async def check_in(self, ticket_id: str) -> CheckInEntry:
        """
        Registrar el ingreso de un ticket

        La inserción en el ledger es el punto de commit: de dos check-ins
        simultáneos del mismo ticket solo uno la logra.

        Raises:
            MalformedPayloadError: Si el ID está vacío
            AlreadyCheckedInError: Si el ticket ya ingresó
        """
        ticket_id = (ticket_id or "").strip()
        if not ticket_id:
            raise MalformedPayloadError("ID de ticket vacío")

        entry = await self.ledger.add(ticket_id)
        await self._cache_mark(ticket_id)
        if entry is None:
            logger.info(f"Ticket {ticket_id} ya había ingresado")
            raise AlreadyCheckedInError(ticket_id)

        logger.info(f"Check-in de ticket {ticket_id}")
        return entry

    async def list_entries(self) -> List[CheckInEntry]:
        return await self.ledger.list_entries()

    async def reset(self) -> List[str]:
        """Vaciar el ledger (acción de operador) y el cache asociado"""
        cleared = await self.ledger.clear()
        await self._cache_forget(cleared)
        logger.info(f"Historial de check-in limpiado ({len(cleared)} tickets)")
        return cleared

    async def export(self) -> CheckInExport:
        ticket_ids = await self.ledger.list_ids()
        return CheckInExport(
            export_date=datetime.now(timezone.utc),
            total_checked_in=len(ticket_ids),
            tickets=ticket_ids,
        )
