"""Modelos Pydantic para tickets"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TicketType(str, Enum):
    """Conjunto cerrado de tipos de ticket"""
    VIP = "VIP"
    STANDARD = "Standard"
    STUDENT = "Student"


class TicketStatus(str, Enum):
    AVAILABLE = "Available"
    SOLD = "Sold"


class TicketRecord(BaseModel):
    """Ticket individual tal como lo guarda el Ticket Store"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    owner_user_id: str
    ticket_number: str
    ticket_type: TicketType
    price: Decimal
    status: TicketStatus = TicketStatus.AVAILABLE
    is_purchased: bool = False
    purchased_by_user_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    qr_payload: str = ""
    is_active: bool = True

    @property
    def is_available(self) -> bool:
        return self.is_active and not self.is_purchased and self.status == TicketStatus.AVAILABLE


class TicketFilter(BaseModel):
    """Filtros para leer tickets de un evento (None = sin filtrar)"""
    is_active: Optional[bool] = True
    is_purchased: Optional[bool] = None
    status: Optional[TicketStatus] = None
    ticket_type: Optional[TicketType] = None
    ticket_number: Optional[str] = None  # Coincidencia parcial
    query: Optional[str] = None  # Búsqueda libre en número, tipo y estado

    @classmethod
    def available(cls) -> "TicketFilter":
        return cls(is_active=True, is_purchased=False, status=TicketStatus.AVAILABLE)


class EventMeta(BaseModel):
    """Datos descriptivos del evento (vienen del servicio de eventos)"""
    event_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    starts_at: Optional[datetime] = None
    location: Optional[str] = None
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None


class TicketRequest(BaseModel):
    # Tipo como texto: se valida contra el conjunto cerrado en el servicio
    ticket_type: str
    price: Decimal
    quantity: int = 1


class IssueTicketsRequest(BaseModel):
    owner_user_id: str
    event: EventMeta
    tickets: List[TicketRequest] = Field(..., min_length=1)


class PurchaseTicketRequest(BaseModel):
    buyer_user_id: str


class UpdateTicketRequest(BaseModel):
    ticket_type: str
    price: Decimal


class TicketResponse(BaseModel):
    id: str
    event_id: str
    owner_user_id: str
    ticket_number: str
    ticket_type: TicketType
    price: Decimal
    status: TicketStatus
    is_purchased: bool
    purchased_by_user_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    qr_payload: str = ""
    qr_image_url: Optional[str] = None

    @classmethod
    def from_record(cls, ticket: TicketRecord, reveal_qr: bool = False) -> "TicketResponse":
        """El QR solo se expone cuando el ticket ya está vendido"""
        data = ticket.model_dump(exclude={"is_active"})
        if not (reveal_qr and ticket.is_purchased):
            data["qr_payload"] = ""
        return cls(**data)


class TicketIdentity(BaseModel):
    """Identidad del ticket contenida en el payload del QR"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ticket_id: str = Field(..., alias="ticketId")
    event_name: str = Field(..., alias="eventName")
    ticket_number: Optional[str] = Field(None, alias="ticketNumber")
    event_id: Optional[str] = Field(None, alias="eventId")
    event_date: Optional[str] = Field(None, alias="eventDate")
    event_time: Optional[str] = Field(None, alias="eventTime")
    event_location: Optional[str] = Field(None, alias="eventLocation")
    organizer_name: Optional[str] = Field(None, alias="organizerName")
    organizer_email: Optional[str] = Field(None, alias="organizerEmail")
    ticket_type: Optional[str] = Field(None, alias="ticketType")
    ticket_price: Optional[Decimal] = Field(None, alias="ticketPrice")
    generated_at: Optional[datetime] = Field(None, alias="generatedAt")


class IssueTicketsResponse(BaseModel):
    event_id: str
    count: int
    tickets: List[TicketResponse]
