"""
Cliente Redis compartido

Redis es un atajo: marca de check-in "ya visto" e imágenes QR renderizadas.
Ninguna decisión de compra o ingreso depende de lo que haya acá, así que
los llamadores tratan sus errores como un cache vacío.
"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
import json
from typing import Optional, Any
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


def namespaced(key: str) -> str:
    """Clave con el prefijo de la app (settings.REDIS_KEY_PREFIX)"""
    return f"{settings.REDIS_KEY_PREFIX}{key}"


async def init_redis():
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    redis_pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        password=settings.REDIS_PASSWORD,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    redis_client = redis.Redis(connection_pool=redis_pool)

    try:
        await redis_client.ping()
        logger.info(f"Redis conectado (pool max_connections={settings.REDIS_MAX_CONNECTIONS})")
    except (RedisError, OSError) as e:
        # Se reintenta en el próximo uso; mientras tanto el cache queda vacío
        logger.error(f"Error conectando a Redis: {e}")


async def get_redis() -> redis.Redis:
    """Obtener cliente Redis"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def cache_get(key: str) -> Optional[Any]:
    """Obtener valor del cache (JSON si se puede, texto si no)"""
    redis_conn = await get_redis()
    value = await redis_conn.get(namespaced(key))
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


async def cache_set(key: str, value: Any, expire: int = 3600):
    """Guardar valor en cache con expiración en segundos"""
    redis_conn = await get_redis()
    if isinstance(value, (dict, list, bool)):
        value = json.dumps(value)
    await redis_conn.setex(namespaced(key), expire, value)


async def cache_delete(*keys: str) -> int:
    """Eliminar una o varias claves en un solo DEL; devuelve cuántas existían"""
    if not keys:
        return 0
    redis_conn = await get_redis()
    return await redis_conn.delete(*(namespaced(k) for k in keys))
