"""Tareas asíncronas para pre-renderizar imágenes QR de tickets"""
import asyncio
import logging
from typing import Dict, List

from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(
    name="generate_ticket_qr",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def generate_ticket_qr_task(self, ticket_id: str, payload: str) -> Dict:
    """
    Renderizar el QR de un ticket y dejarlo en el cache de imágenes

    Se encola tras la emisión cuando QR_PRERENDER está activo; el endpoint
    de imagen lo encuentra listo en vez de renderizarlo en el request.
    """
    from shared.utils.qr_generator import render_qr_png
    from shared.cache.redis_client import close_redis
    from services.ticketing.services.qr_image_service import store_qr_png

    logger.info(f"[CELERY] Renderizando QR del ticket {ticket_id}")
    png = render_qr_png(payload)

    async def store():
        # Cada tarea usa su propio event loop: el pool de Redis no se reutiliza
        try:
            return await store_qr_png(ticket_id, png)
        finally:
            await close_redis()

    cached = run_async(store())
    return {"ticket_id": ticket_id, "bytes": len(png), "cached": cached}


def enqueue_qr_prerender(tickets: List) -> int:
    """Encolar el pre-render de una lista de TicketRecord; devuelve cuántos se encolaron"""
    for ticket in tickets:
        generate_ticket_qr_task.delay(ticket.id, ticket.qr_payload)
    logger.info(f"[CELERY] {len(tickets)} QR encolados para pre-render")
    return len(tickets)
