"""
Configuración de Celery

Solo hay trabajo opcional en segundo plano: pre-renderizar las imágenes QR
de un lote recién emitido para que la primera descarga salga del cache.
"""
from celery import Celery
from kombu import Queue, Exchange
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

BROKER_URL = settings.CELERY_BROKER_URL or settings.REDIS_URL

celery_app = Celery(
    "eventun",
    broker=BROKER_URL,
    backend=BROKER_URL,
    include=["services.ticketing.tasks.qr_tasks"],
)

qr_exchange = Exchange("qr", type="direct")

celery_app.conf.task_queues = (
    Queue("default", qr_exchange, routing_key="default"),
    Queue("qr_render", qr_exchange, routing_key="qr.render"),
)

celery_app.conf.task_routes = {
    "generate_ticket_qr": {"queue": "qr_render", "routing_key": "qr.render"},
}

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Un PNG tarda milisegundos; un minuto ya es un worker colgado
    task_time_limit=60,
    task_soft_time_limit=45,

    worker_prefetch_multiplier=1,
    broker_pool_limit=settings.CELERY_MAX_CONNECTIONS,
    redis_max_connections=settings.CELERY_MAX_CONNECTIONS,
    broker_connection_retry_on_startup=True,

    # Re-renderizar es idempotente: ACK al terminar
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Nadie consulta el resultado más allá de logs
    result_expires=600,

    task_default_queue="default",
    task_default_exchange="qr",
    task_default_routing_key="default",

    task_annotations={
        "generate_ticket_qr": {"rate_limit": settings.QR_RENDER_RATE_LIMIT},
    },
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d",
    BROKER_URL.split("@")[-1],
    settings.CELERY_MAX_CONNECTIONS,
)
