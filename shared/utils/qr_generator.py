"""Utilidades para generar imágenes QR de tickets"""
from io import BytesIO
from typing import Optional
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

from app.core.config import settings

ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


def _normalize_color(color: str) -> str:
    """Aceptar colores como 'FFFFFF' o '#ffffff' y devolver hex sin '#'"""
    color = color.strip().lstrip("#").upper()
    if len(color) != 6 or any(c not in "0123456789ABCDEF" for c in color):
        raise ValueError(f"Color inválido: {color}")
    return color


def _ecc_level(ecc: str) -> str:
    ecc = ecc.upper()
    if ecc not in ERROR_CORRECTION_LEVELS:
        raise ValueError(f"Nivel de corrección de errores inválido: {ecc}")
    return ecc


def build_qr_image_url(
    payload: str,
    size: Optional[int] = None,
    color: Optional[str] = None,
    bg_color: Optional[str] = None,
    ecc: Optional[str] = None,
) -> str:
    """
    Construir la URL del servicio externo de creación de QR

    La URL devuelta es una referencia de imagen PNG lista para mostrar o imprimir.

    Args:
        payload: Texto a codificar (payload del ticket)
        size: Lado en píxeles (default: QR_SIZE)
        color: Color de primer plano en hex (default: QR_COLOR)
        bg_color: Color de fondo en hex (default: QR_BG_COLOR)
        ecc: Nivel de corrección de errores L/M/Q/H (default: QR_ECC)
    """
    size = size or settings.QR_SIZE
    params = {
        "data": payload,
        "size": f"{size}x{size}",
        "color": _normalize_color(color or settings.QR_COLOR),
        "bgcolor": _normalize_color(bg_color or settings.QR_BG_COLOR),
        "margin": "2",
        "qzone": "1",
        "format": "png",
        "ecc": _ecc_level(ecc or settings.QR_ECC),
    }
    return f"{settings.QR_CREATE_URL}?{urlencode(params)}"


def render_qr_png(
    payload: str,
    box_size: int = 10,
    border: int = 4,
    color: Optional[str] = None,
    bg_color: Optional[str] = None,
    ecc: Optional[str] = None,
) -> bytes:
    """Renderizar localmente el QR de un payload como PNG"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECTION_LEVELS[_ecc_level(ecc or settings.QR_ECC)],
        box_size=box_size,
        border=border,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(
        fill_color=f"#{_normalize_color(color or settings.QR_COLOR)}",
        back_color=f"#{_normalize_color(bg_color or settings.QR_BG_COLOR)}",
    )

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
