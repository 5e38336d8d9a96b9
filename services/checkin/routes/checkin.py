"""Rutas de validación, check-in y escaneo de QR en la puerta"""
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from shared.database.session import get_db
from shared.errors import DomainError
from shared.utils.http_errors import domain_http_exception
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.checkin.models.checkin import (
    CameraScanRequest,
    CheckInEntry,
    CheckInExport,
    CheckInRequest,
    LedgerResetResponse,
    ScanOutcome,
    ScanStatus,
    ScanUrlRequest,
    ValidatePayloadRequest,
    ValidationResult,
)
from services.checkin.services.checkin_service import CheckInValidator
from services.checkin.services.decode_client import QRDecodeClient
from services.checkin.services.frame_sources import CameraSource, ImageBytesSource, UrlSource
from services.checkin.services.scan_loop import ScanLoop, ScanSessionManager
from services.checkin.stores.ledger import SqlCheckInLedger

logger = logging.getLogger(__name__)

router = APIRouter()

# Un cliente de lectura compartido: su circuit breaker debe ver todos los fallos
_decode_client: Optional[QRDecodeClient] = None

scan_sessions = ScanSessionManager()


def get_decode_client() -> QRDecodeClient:
    global _decode_client
    if _decode_client is None:
        _decode_client = QRDecodeClient()
    return _decode_client


async def close_scanning() -> None:
    """Cerrar sesiones de cámara y el cliente de lectura (shutdown)"""
    global _decode_client
    await scan_sessions.close_all()
    if _decode_client is not None:
        await _decode_client.aclose()
        _decode_client = None


async def get_validator(db: AsyncSession = Depends(get_db)) -> CheckInValidator:
    return CheckInValidator(SqlCheckInLedger(db))


@router.post("/validate", response_model=ValidationResult)
@limiter.limit(RATE_LIMITS["checkin"])
async def validate_ticket(
    request: Request,  # Necesario para rate limiter
    validate_request: ValidatePayloadRequest,
    validator: CheckInValidator = Depends(get_validator)
):
    """
    Validar el texto leído de un QR

    Un payload con formato inválido o ya usado es un resultado negativo
    (ok=false con su motivo), no un error HTTP.
    """
    return await validator.validate_payload(validate_request.payload)


@router.post("/checkin", response_model=CheckInEntry, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["checkin"])
async def check_in_ticket(
    request: Request,
    checkin_request: CheckInRequest,
    validator: CheckInValidator = Depends(get_validator)
):
    """Registrar el ingreso; 409 si el ticket ya ingresó"""
    try:
        return await validator.check_in(checkin_request.ticket_id)
    except DomainError as e:
        raise domain_http_exception(e) from e


async def _scan_once(loop: ScanLoop) -> ScanOutcome:
    outcome = await loop.run_once()
    if outcome.status == ScanStatus.ERROR:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "DECODE_SERVICE_UNAVAILABLE", "message": outcome.message}
        )
    return outcome


@router.post("/scan/url", response_model=ScanOutcome)
@limiter.limit(RATE_LIMITS["checkin"])
async def scan_from_url(
    request: Request,
    scan_request: ScanUrlRequest,
    validator: CheckInValidator = Depends(get_validator),
    client: QRDecodeClient = Depends(get_decode_client)
):
    """Leer y validar el QR de una imagen publicada en una URL"""
    loop = ScanLoop(UrlSource(str(scan_request.url)), client, validator)
    return await _scan_once(loop)


@router.post("/scan/upload", response_model=ScanOutcome)
@limiter.limit(RATE_LIMITS["checkin"])
async def scan_from_upload(
    request: Request,
    file: UploadFile = File(...),
    validator: CheckInValidator = Depends(get_validator),
    client: QRDecodeClient = Depends(get_decode_client)
):
    """Leer y validar el QR de una imagen subida"""
    image = await file.read()
    if not image:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "MALFORMED_PAYLOAD", "message": "Imagen vacía"}
        )
    source = ImageBytesSource(image, file.filename or "qr-code.png")
    return await _scan_once(ScanLoop(source, client, validator))


@router.post("/scan/camera/{session_id}", status_code=status.HTTP_202_ACCEPTED)
async def start_camera_scan(
    session_id: str,
    camera_request: CameraScanRequest,
    client: QRDecodeClient = Depends(get_decode_client)
):
    """
    Iniciar el escaneo continuo con una cámara local

    Reemplaza cualquier escaneo previo de la misma sesión.
    """
    loop = ScanLoop(
        CameraSource(camera_request.device_index),
        client,
        interval=camera_request.interval
    )
    await scan_sessions.start(session_id, loop)
    return {"session_id": session_id, "status": "scanning"}


@router.get("/scan/camera/{session_id}", response_model=ScanOutcome)
async def get_camera_scan(
    session_id: str,
    validator: CheckInValidator = Depends(get_validator)
):
    """
    Estado del escaneo continuo; la lectura final se valida contra el ledger

    El resultado final se entrega una sola vez: después la sesión ya no existe.
    """
    loop = scan_sessions.collect(session_id)
    if loop is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "Sesión de escaneo no encontrada"}
        )

    outcome = loop.outcome
    if outcome is None:
        return ScanOutcome(status=ScanStatus.NO_CODE, message="Escaneando...")
    if outcome.status == ScanStatus.DECODED and outcome.validation is None:
        validation = await validator.validate_payload(outcome.data)
        outcome = outcome.model_copy(update={"validation": validation, "message": validation.message})
    return outcome


@router.delete("/scan/camera/{session_id}", response_model=Optional[ScanOutcome])
async def stop_camera_scan(session_id: str):
    """Cancelar el escaneo y liberar la cámara"""
    return await scan_sessions.stop(session_id)


@router.get("/ledger", response_model=List[CheckInEntry])
async def list_checked_in(validator: CheckInValidator = Depends(get_validator)):
    return await validator.list_entries()


@router.get("/ledger/export", response_model=CheckInExport)
async def export_checked_in(validator: CheckInValidator = Depends(get_validator)):
    """Reporte {exportDate, totalCheckedIn, tickets}"""
    return await validator.export()


@router.delete("/ledger", response_model=LedgerResetResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def reset_ledger(
    request: Request,
    validator: CheckInValidator = Depends(get_validator)
):
    """Vaciar el historial de check-in (acción de operador)"""
    cleared = await validator.reset()
    return LedgerResetResponse(cleared=len(cleared), ticket_ids=cleared)
