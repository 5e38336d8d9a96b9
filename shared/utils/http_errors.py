"""Traducción de errores de dominio a respuestas HTTP"""
from fastapi import HTTPException

from shared.errors import DomainError, http_status_for


def domain_http_exception(e: DomainError) -> HTTPException:
    """HTTPException con el código de dominio y el mensaje para el usuario"""
    return HTTPException(
        status_code=http_status_for(e),
        detail={"code": e.code.value, "message": e.message}
    )
