"""Servicio de emisión de tickets individuales"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Set, Tuple
import logging
import random
import uuid

from app.core.config import settings
from services.ticketing.models.ticket import (
    EventMeta,
    TicketRecord,
    TicketRequest,
    TicketStatus,
    TicketType,
)
from services.ticketing.services import qr_payload
from services.ticketing.stores.interfaces import TicketStore
from shared.errors import InvalidTicketRequestError, InvalidTicketTypeError, StorageConflictError
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Intentos para sacar un sufijo aleatorio no usado dentro del mismo segundo
MAX_NUMBER_DRAWS = 50

# Igual que la columna tickets.price: Numeric(12, 2)
PRICE_MAX_DIGITS = 12
PRICE_DECIMAL_PLACES = 2
PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMAL_PLACES)


def parse_ticket_type(value: str) -> TicketType:
    """Validar un tipo de ticket contra el conjunto cerrado"""
    try:
        return TicketType(value)
    except ValueError:
        raise InvalidTicketTypeError(value) from None


def parse_price(value: Decimal) -> Decimal:
    """
    Validar un precio contra lo que guarda el store

    Devuelve el precio con exactamente 2 decimales, que es como vuelve de la
    base; así el ticket guardado y su payload QR nunca difieren.

    Raises:
        InvalidTicketRequestError: Si es negativo, no finito, tiene más de 2
            decimales o no entra en Numeric(12, 2)
    """
    if not value.is_finite():
        raise InvalidTicketRequestError("Precio inválido")
    if value < 0:
        raise InvalidTicketRequestError("El precio no puede ser negativo")
    if value >= Decimal(10) ** (PRICE_MAX_DIGITS - PRICE_DECIMAL_PLACES):
        raise InvalidTicketRequestError("El precio excede el máximo permitido")
    quantized = value.quantize(PRICE_QUANTUM)
    if quantized != value:
        raise InvalidTicketRequestError(
            f"El precio admite como máximo {PRICE_DECIMAL_PLACES} decimales"
        )
    return quantized


class TicketNumberGenerator:
    """
    Genera números TKT-<yyyyMMddHHmmss>-<4 dígitos>

    Recuerda los números entregados para que un lote nunca repita uno;
    la unicidad contra lo ya guardado la garantiza el store.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.SystemRandom()
        self._issued: Set[str] = set()

    def next(self) -> str:
        timestamp = self._clock().strftime("%Y%m%d%H%M%S")
        for _ in range(MAX_NUMBER_DRAWS):
            number = f"TKT-{timestamp}-{self._rng.randint(1000, 9999)}"
            if number not in self._issued:
                self._issued.add(number)
                return number
        raise StorageConflictError(f"sin números libres para {timestamp}")


class TicketIssuer:
    """Expande solicitudes {tipo, precio, cantidad} en tickets individuales"""

    def __init__(
        self,
        store: TicketStore,
        number_generator_factory: Callable[[], TicketNumberGenerator] = TicketNumberGenerator
    ) -> None:
        self.store = store
        self._number_generator_factory = number_generator_factory

    def _validate_requests(self, requests: List[TicketRequest]) -> List[Tuple[TicketType, Decimal]]:
        if not requests:
            raise InvalidTicketRequestError("La solicitud no contiene tickets")

        validated = []
        total = 0
        for request in requests:
            validated.append((parse_ticket_type(request.ticket_type), parse_price(request.price)))
            if request.quantity < 1:
                raise InvalidTicketRequestError("La cantidad debe ser al menos 1")
            total += request.quantity

        if total > settings.MAX_TICKETS_PER_REQUEST:
            raise InvalidTicketRequestError(
                f"Máximo {settings.MAX_TICKETS_PER_REQUEST} tickets por solicitud (solicitados: {total})"
            )
        return validated

    async def issue(
        self,
        event_id: str,
        owner_user_id: str,
        requests: List[TicketRequest],
        event: EventMeta
    ) -> List[TicketRecord]:
        """
        Generar y guardar un ticket por cada unidad solicitada

        El lote se guarda completo o no se guarda.

        Raises:
            InvalidTicketTypeError: Si algún tipo no pertenece al conjunto cerrado
            InvalidTicketRequestError: Si cantidad o precio están fuera de rango
            StorageConflictError: Si el store rechaza el lote por unicidad
        """
        validated = self._validate_requests(requests)
        numbers = self._number_generator_factory()
        event = event.model_copy(update={"event_id": event_id})
        generated_at = datetime.now(timezone.utc)

        tickets: List[TicketRecord] = []
        for request, (ticket_type, price) in zip(requests, validated):
            # Cada unidad es un ticket propio, nunca un multiplicador
            for _ in range(request.quantity):
                ticket = TicketRecord(
                    id=str(uuid.uuid4()),
                    event_id=event_id,
                    owner_user_id=owner_user_id,
                    ticket_number=numbers.next(),
                    ticket_type=ticket_type,
                    price=price,
                    status=TicketStatus.AVAILABLE,
                    is_purchased=False,
                    is_active=True,
                )
                ticket.qr_payload = qr_payload.encode(ticket, event, generated_at)
                tickets.append(ticket)

        await self.store.create_many(tickets)
        logger.info(f"Emitidos {len(tickets)} tickets para evento {event_id}")
        return tickets

    async def issue_with_retry(
        self,
        event_id: str,
        owner_user_id: str,
        requests: List[TicketRequest],
        event: EventMeta,
        max_retries: Optional[int] = None
    ) -> List[TicketRecord]:
        """
        Emitir regenerando el lote completo ante StorageConflictError

        El número TKT solo es único dentro de un lote y por segundo: la espera
        entre intentos es de al menos un segundo para que el lote nuevo use
        otro timestamp.
        """
        return await retry_with_backoff(
            lambda: self.issue(event_id, owner_user_id, requests, event),
            max_retries=settings.ISSUE_MAX_RETRIES if max_retries is None else max_retries,
            initial_delay=settings.ISSUE_RETRY_DELAY_SECONDS,
            max_delay=4 * settings.ISSUE_RETRY_DELAY_SECONDS,
            exceptions=(StorageConflictError,),
        )
