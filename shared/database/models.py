"""Modelos SQLAlchemy"""
from sqlalchemy import Column, String, Boolean, DateTime, Numeric, Text
from sqlalchemy.sql import expression, func
import uuid
from shared.database.connection import Base


class Ticket(Base):
    __tablename__ = "tickets"

    # IDs como texto: los eventos y usuarios vienen de servicios externos con IDs opacos
    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), nullable=False, index=True)
    owner_user_id = Column(String(64), nullable=False)  # Organizador que emitió el ticket
    ticket_number = Column(String(40), unique=True, nullable=False, index=True)
    ticket_type = Column(String(20), nullable=False)  # VIP, Standard, Student
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    status = Column(String(20), nullable=False, server_default="Available", index=True)  # Available, Sold
    is_purchased = Column(Boolean, nullable=False, server_default=expression.false())
    purchased_by_user_id = Column(String(64), nullable=True, index=True)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    qr_payload = Column(Text, nullable=False, server_default="")  # Se asigna al emitir, nunca se regenera
    is_active = Column(Boolean, nullable=False, server_default=expression.true())  # Soft delete
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class TicketCheckIn(Base):
    """
    Registro de ingreso (ledger de check-in)
    La PK sobre ticket_id es el punto atómico: un segundo insert falla por unicidad
    """
    __tablename__ = "ticket_checkins"

    # Sin FK a tickets: los QR legacy pueden traer IDs que no existen en la tabla
    ticket_id = Column(String(255), primary_key=True)
    checked_in_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
