"""Imágenes QR de tickets vendidos (render local + cache Redis)"""
import base64
import logging
from typing import Optional

from redis.exceptions import RedisError

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set
from shared.utils.qr_generator import render_qr_png

logger = logging.getLogger(__name__)


def qr_cache_key(ticket_id: str) -> str:
    return f"ticket:qr:{ticket_id}"


async def _cached_png(ticket_id: str) -> Optional[bytes]:
    try:
        cached = await cache_get(qr_cache_key(ticket_id))
    except (RedisError, OSError) as e:
        logger.warning(f"Cache de QR no disponible, se renderiza: {e}")
        return None
    if not cached:
        return None
    return base64.b64decode(cached)


async def store_qr_png(ticket_id: str, png: bytes) -> bool:
    """Guardar el PNG en cache (base64, el cliente Redis trabaja con texto)"""
    try:
        await cache_set(
            qr_cache_key(ticket_id),
            base64.b64encode(png).decode("ascii"),
            expire=settings.QR_IMAGE_CACHE_TTL,
        )
        return True
    except (RedisError, OSError) as e:
        logger.warning(f"No se pudo cachear el QR del ticket {ticket_id}: {e}")
        return False


async def get_qr_png(ticket_id: str, payload: str) -> bytes:
    """PNG del QR de un ticket, desde cache o renderizado al vuelo"""
    png = await _cached_png(ticket_id)
    if png is not None:
        return png

    png = render_qr_png(payload)
    await store_qr_png(ticket_id, png)
    return png
