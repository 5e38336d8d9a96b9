"""Modelos Pydantic para check-in y escaneo de QR"""
from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from typing import Optional, List
from datetime import datetime
from enum import Enum

from services.ticketing.models.ticket import TicketIdentity
from shared.errors import ErrorCode


class ValidationResult(BaseModel):
    """Resultado de validar un ticket contra el ledger de ingreso"""
    ok: bool
    ticket_id: Optional[str] = None
    reason: Optional[ErrorCode] = None
    message: str
    ticket: Optional[TicketIdentity] = None
    is_raw: bool = False  # QR legacy: el texto completo es el ID


class CheckInEntry(BaseModel):
    ticket_id: str
    checked_in_at: datetime


class ValidatePayloadRequest(BaseModel):
    payload: str = Field(..., description="Texto leído del QR")


class CheckInRequest(BaseModel):
    ticket_id: str = Field(..., min_length=1)


class ScanUrlRequest(BaseModel):
    url: HttpUrl


class CameraScanRequest(BaseModel):
    device_index: int = Field(0, ge=0)
    interval: Optional[float] = Field(None, gt=0)


class CheckInExport(BaseModel):
    """Reporte exportable del ledger"""
    model_config = ConfigDict(populate_by_name=True)

    export_date: datetime = Field(..., alias="exportDate")
    total_checked_in: int = Field(..., alias="totalCheckedIn")
    tickets: List[str]


class LedgerResetResponse(BaseModel):
    cleared: int
    ticket_ids: List[str]


class ScanStatus(str, Enum):
    DECODED = "decoded"  # Hay datos; el loop se detiene
    NO_CODE = "no_code"  # Imagen sin QR o sin datos
    ERROR = "error"  # El servicio o la captura fallaron en este tick
    CANCELLED = "cancelled"
    DEVICE_LOST = "device_lost"


class ScanOutcome(BaseModel):
    status: ScanStatus
    data: Optional[str] = None
    message: str
    validation: Optional[ValidationResult] = None
