"""Rutas de emisión, disponibilidad, compra y catálogo de tickets"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from kombu.exceptions import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from app.core.config import settings
from shared.database.session import get_db
from shared.errors import DomainError
from shared.utils.http_errors import domain_http_exception
from shared.utils.qr_generator import build_qr_image_url
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticketing.models.ticket import (
    IssueTicketsRequest,
    IssueTicketsResponse,
    PurchaseTicketRequest,
    TicketFilter,
    TicketResponse,
    TicketStatus,
    TicketType,
    UpdateTicketRequest,
)
from services.ticketing.services.availability_service import AvailabilityQuery
from services.ticketing.services.catalog_service import TicketCatalog
from services.ticketing.services.issuer_service import TicketIssuer
from services.ticketing.services.purchase_service import PurchaseCoordinator
from services.ticketing.services.qr_image_service import get_qr_png
from services.ticketing.stores.interfaces import TicketStore
from services.ticketing.stores.sql_store import SqlTicketStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_ticket_store(db: AsyncSession = Depends(get_db)) -> TicketStore:
    return SqlTicketStore(db)


@router.post(
    "/events/{event_id}/issue",
    response_model=IssueTicketsResponse,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(RATE_LIMITS["issue"])
async def issue_tickets(
    request: Request,  # Necesario para rate limiter
    event_id: str,
    issue_request: IssueTicketsRequest,
    store: TicketStore = Depends(get_ticket_store)
):
    """
    Emitir tickets individuales para un evento

    Cada unidad de `quantity` genera un ticket propio con número TKT único
    y su payload QR. El lote se guarda completo o no se guarda.
    """
    issuer = TicketIssuer(store)
    try:
        tickets = await issuer.issue_with_retry(
            event_id,
            issue_request.owner_user_id,
            issue_request.tickets,
            issue_request.event
        )
    except DomainError as e:
        logger.warning(f"Emisión rechazada para evento {event_id}: {e}")
        raise domain_http_exception(e) from e

    if settings.QR_PRERENDER:
        from services.ticketing.tasks.qr_tasks import enqueue_qr_prerender
        try:
            enqueue_qr_prerender(tickets)
        except OperationalError as e:
            # El render al vuelo sigue disponible
            logger.warning(f"No se pudo encolar el pre-render de QR: {e}")

    return IssueTicketsResponse(
        event_id=event_id,
        count=len(tickets),
        tickets=[TicketResponse.from_record(t) for t in tickets]
    )


@router.get("/events/{event_id}/available", response_model=List[TicketResponse])
@limiter.limit(RATE_LIMITS["public"])
async def get_available_tickets(
    request: Request,
    event_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    """Tickets disponibles del evento, por precio y tipo (sin QR)"""
    tickets = await AvailabilityQuery(store).available_for_event(event_id)
    return [TicketResponse.from_record(t) for t in tickets]


@router.get("/events/{event_id}", response_model=List[TicketResponse])
async def list_event_tickets(
    event_id: str,
    ticket_status: Optional[TicketStatus] = Query(None, alias="status"),
    ticket_type: Optional[TicketType] = None,
    is_purchased: Optional[bool] = None,
    ticket_number: Optional[str] = None,
    q: Optional[str] = Query(None, description="Búsqueda en número, tipo y estado"),
    store: TicketStore = Depends(get_ticket_store)
):
    """Listar los tickets activos de un evento con filtros opcionales"""
    filters = TicketFilter(
        status=ticket_status,
        ticket_type=ticket_type,
        is_purchased=is_purchased,
        ticket_number=ticket_number,
        query=q,
    )
    tickets = await TicketCatalog(store).list_for_event(event_id, filters)
    return [TicketResponse.from_record(t) for t in tickets]


@router.post("/{ticket_id}/purchase", response_model=TicketResponse)
@limiter.limit(RATE_LIMITS["purchase"])  # 10 intentos por minuto por IP
async def purchase_ticket(
    request: Request,
    ticket_id: str,
    purchase_request: PurchaseTicketRequest,
    store: TicketStore = Depends(get_ticket_store)
):
    """
    Comprar un ticket

    Devuelve el ticket vendido con su payload QR. Si otro comprador ganó la
    carrera responde 409.
    """
    try:
        sold = await PurchaseCoordinator(store).purchase(ticket_id, purchase_request.buyer_user_id)
    except DomainError as e:
        raise domain_http_exception(e) from e

    response = TicketResponse.from_record(sold, reveal_qr=True)
    response.qr_image_url = build_qr_image_url(sold.qr_payload)
    return response


@router.get("/purchased/{user_id}", response_model=List[TicketResponse])
async def get_user_purchases(
    user_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    """Tickets comprados por un usuario, el más reciente primero"""
    tickets = await TicketCatalog(store).list_purchased_by(user_id)
    return [TicketResponse.from_record(t, reveal_qr=True) for t in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    try:
        ticket = await TicketCatalog(store).get_ticket(ticket_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return TicketResponse.from_record(ticket)


@router.put("/{ticket_id}", response_model=TicketResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def update_ticket(
    request: Request,
    ticket_id: str,
    update_request: UpdateTicketRequest,
    store: TicketStore = Depends(get_ticket_store)
):
    """Cambiar tipo y precio de un ticket que todavía no se vendió"""
    try:
        ticket = await TicketCatalog(store).update_ticket(
            ticket_id,
            update_request.ticket_type,
            update_request.price
        )
    except DomainError as e:
        raise domain_http_exception(e) from e
    return TicketResponse.from_record(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(RATE_LIMITS["admin"])
async def delete_ticket(
    request: Request,
    ticket_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    """Baja lógica del ticket"""
    try:
        await TicketCatalog(store).deactivate_ticket(ticket_id)
    except DomainError as e:
        raise domain_http_exception(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{ticket_id}/qr")
async def get_ticket_qr(
    ticket_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    """
    Imagen PNG del QR de un ticket vendido

    Un ticket sin vender responde 404 para no filtrar su payload.
    """
    try:
        ticket = await TicketCatalog(store).get_ticket(ticket_id)
    except DomainError as e:
        raise domain_http_exception(e) from e

    if not ticket.is_purchased or not ticket.qr_payload:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "QR no disponible para este ticket"}
        )

    png = await get_qr_png(ticket.id, ticket.qr_payload)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="ticket_{ticket.ticket_number}.png"'}
    )
