"""Errores de dominio del motor de tickets y check-in"""
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Códigos de error de dominio"""

    INVALID_TICKET_TYPE = "INVALID_TICKET_TYPE"
    INVALID_TICKET_REQUEST = "INVALID_TICKET_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_PURCHASED = "ALREADY_PURCHASED"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    DECODE_SERVICE_UNAVAILABLE = "DECODE_SERVICE_UNAVAILABLE"
    STORAGE_CONFLICT = "STORAGE_CONFLICT"


class DomainError(Exception):
    """Error de dominio base con código y mensaje apto para el usuario"""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidTicketTypeError(DomainError):
    def __init__(self, ticket_type: str) -> None:
        super().__init__(
            code=ErrorCode.INVALID_TICKET_TYPE,
            message=f"Tipo de ticket inválido: {ticket_type}",
        )
        self.ticket_type = ticket_type


class InvalidTicketRequestError(DomainError):
    """Cantidad o precio fuera de rango en una solicitud de emisión"""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_TICKET_REQUEST, message=message)


class TicketNotFoundError(DomainError):
    def __init__(self, ticket_id: str) -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message="Ticket no encontrado")
        self.ticket_id = ticket_id


class AlreadyPurchasedError(DomainError):
    """El ticket ya fue vendido (incluye la carrera perdida contra otra compra)"""

    def __init__(self, ticket_id: str) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_PURCHASED,
            message="El ticket ya fue comprado",
        )
        self.ticket_id = ticket_id


class PayloadError(DomainError):
    """Base para errores al decodificar el contenido de un QR"""


class MalformedPayloadError(PayloadError):
    def __init__(self, detail: Optional[str] = None) -> None:
        message = "Formato de ticket inválido"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(code=ErrorCode.MALFORMED_PAYLOAD, message=message)


class MissingRequiredFieldError(PayloadError):
    def __init__(self, field: str) -> None:
        super().__init__(
            code=ErrorCode.MISSING_REQUIRED_FIELD,
            message=f"Falta el campo requerido: {field}",
        )
        self.field = field


class AlreadyCheckedInError(DomainError):
    def __init__(self, ticket_id: str) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_CHECKED_IN,
            message="Este ticket ya fue registrado en el ingreso",
        )
        self.ticket_id = ticket_id


class DecodeServiceUnavailableError(DomainError):
    """El servicio externo de lectura de QR falló (reintentable)"""

    def __init__(self, detail: str) -> None:
        super().__init__(
            code=ErrorCode.DECODE_SERVICE_UNAVAILABLE,
            message=f"Servicio de lectura QR no disponible: {detail}",
        )


class StorageConflictError(DomainError):
    """El almacenamiento rechazó una escritura por unicidad (señal para regenerar)"""

    def __init__(self, detail: str) -> None:
        super().__init__(
            code=ErrorCode.STORAGE_CONFLICT,
            message=f"Conflicto de unicidad al guardar: {detail}",
        )


# Status HTTP con el que las rutas exponen cada código
HTTP_STATUS = {
    ErrorCode.INVALID_TICKET_TYPE: 400,
    ErrorCode.INVALID_TICKET_REQUEST: 400,
    ErrorCode.MALFORMED_PAYLOAD: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_PURCHASED: 409,
    ErrorCode.ALREADY_CHECKED_IN: 409,
    ErrorCode.STORAGE_CONFLICT: 409,
    ErrorCode.DECODE_SERVICE_UNAVAILABLE: 503,
}


def http_status_for(error: DomainError) -> int:
    return HTTP_STATUS.get(error.code, 500)
