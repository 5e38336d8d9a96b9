"""
Rate limiting usando slowapi
Storage configurable: memoria local o Redis para compartir límites entre instancias
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """
    Obtener IP real del cliente considerando proxies/load balancers.
    Importante para rate limiting correcto detrás de nginx/cloudflare.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For puede tener múltiples IPs: client, proxy1, proxy2
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    cf_connecting_ip = request.headers.get("CF-Connecting-IP")
    if cf_connecting_ip:
        return cf_connecting_ip

    return get_remote_address(request)


def get_client_identifier(request: Request) -> str:
    """
    Generar identificador único para rate limiting.
    Combina IP + hash del token si viene autenticado (lo valida la capa externa).
    """
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        # Usar hash del token para no exponer el token completo
        token_hash = hashlib.md5(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    headers_enabled=False,  # Deshabilitado para compatibilidad con response_model de FastAPI
)
logger.info(
    f"Rate limiter inicializado: {settings.RATE_LIMIT_STORAGE_URI.split('@')[-1]}"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Handler personalizado para rate limit exceeded.
    Retorna JSON con información útil para el cliente.
    """
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}, "
        f"Retry-After: {retry_after}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={"Retry-After": str(retry_after)},
    )


# ============ RATE LIMITS PRE-DEFINIDOS ============

RATE_LIMITS = {
    # Compras: más restrictivo para evitar acaparamiento de tickets
    "purchase": "10/minute",

    # Emisión de tickets por organizadores
    "issue": "30/minute",

    # Check-in: los scanners envían varias lecturas por minuto
    "checkin": "120/minute",

    # Consultas públicas de disponibilidad
    "public": "60/minute",

    # Operaciones de operador (reset/export del ledger)
    "admin": "30/minute",
}
