"""
Codec del payload QR de un ticket

El payload es JSON con claves camelCase (ticketId, eventName, ...), serializado
con claves ordenadas y sin espacios para que sea determinístico.
"""
import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import ValidationError

from services.ticketing.models.ticket import EventMeta, TicketIdentity, TicketRecord
from shared.errors import MalformedPayloadError, MissingRequiredFieldError

REQUIRED_FIELDS = ("ticketId", "eventName")


def build_identity(
    ticket: TicketRecord,
    event: EventMeta,
    generated_at: Optional[datetime] = None
) -> TicketIdentity:
    """Armar la identidad del ticket a partir del ticket y los datos del evento"""
    starts_at = event.starts_at
    return TicketIdentity(
        ticket_id=ticket.id,
        ticket_number=ticket.ticket_number,
        event_id=ticket.event_id,
        event_name=event.name,
        event_date=starts_at.date().isoformat() if starts_at else None,
        event_time=starts_at.strftime("%H:%M") if starts_at else None,
        event_location=event.location,
        organizer_name=event.organizer_name,
        organizer_email=event.organizer_email,
        ticket_type=ticket.ticket_type.value,
        ticket_price=ticket.price,
        generated_at=generated_at or datetime.now(timezone.utc),
    )


def serialize(identity: TicketIdentity) -> str:
    data = identity.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode(
    ticket: TicketRecord,
    event: EventMeta,
    generated_at: Optional[datetime] = None
) -> str:
    """
    Codificar la identidad de un ticket como payload de texto para el QR

    Args:
        ticket: Ticket recién generado
        event: Datos descriptivos del evento
        generated_at: Timestamp de emisión (default: ahora, UTC)

    Returns:
        JSON compacto y determinístico
    """
    return serialize(build_identity(ticket, event, generated_at))


def decode(payload: str) -> TicketIdentity:
    """
    Decodificar un payload QR

    Raises:
        MalformedPayloadError: Si no es un objeto JSON válido o un campo tiene tipo inválido
        MissingRequiredFieldError: Si falta ticketId o eventName
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError("no es JSON") from e

    if not isinstance(data, dict):
        raise MalformedPayloadError("se esperaba un objeto JSON")

    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingRequiredFieldError(field)

    # Los IDs numéricos de QR legacy se aceptan como texto
    data["ticketId"] = str(data["ticketId"]).strip()
    data["eventName"] = str(data["eventName"])

    try:
        return TicketIdentity.model_validate(data)
    except ValidationError as e:
        raise MalformedPayloadError(f"{e.error_count()} campo(s) inválido(s)") from e


def decode_scanned(payload: str) -> Union[TicketIdentity, str]:
    """
    Decodificar el texto leído de un QR en la puerta

    Los códigos que no son JSON (QR legacy o de baja fidelidad) se aceptan como
    un ID de ticket en bruto. El JSON que no cumple el formato sí es un error.

    Raises:
        MalformedPayloadError: Si el texto está vacío o es JSON con formato inválido
        MissingRequiredFieldError: Si es JSON pero falta ticketId o eventName
    """
    text = (payload or "").strip()
    if not text:
        raise MalformedPayloadError("el QR no contiene datos")

    try:
        json.loads(text)
    except ValueError:
        return text

    return decode(text)
