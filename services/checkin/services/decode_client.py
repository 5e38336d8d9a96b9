"""Cliente del servicio externo de lectura de QR (api.qrserver.com read-qr-code)"""
from typing import Any, Optional
import logging

import httpx
from pydantic import BaseModel

from app.core.config import settings
from shared.errors import DecodeServiceUnavailableError
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

MESSAGE_NO_CODE = "No se encontró un código QR en la imagen"
MESSAGE_NO_SYMBOL = "No se encontraron datos de QR"
MESSAGE_NO_DATA = "El código QR no contiene datos"
MESSAGE_READ_ERROR = "Error leyendo el código QR: "


class DecodeResult(BaseModel):
    """Primer símbolo devuelto por el servicio: datos o error"""
    data: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return bool(self.data and self.data.strip())


def parse_decode_response(body: Any) -> DecodeResult:
    """
    Interpretar la respuesta `[{type, symbol: [{seq, data, error}]}]`

    Solo se consulta el primer resultado y su primer símbolo.
    """
    if not isinstance(body, list) or not body or not isinstance(body[0], dict):
        return DecodeResult(error=MESSAGE_NO_CODE)

    symbols = body[0].get("symbol")
    if not isinstance(symbols, list) or not symbols or not isinstance(symbols[0], dict):
        return DecodeResult(error=MESSAGE_NO_SYMBOL)

    symbol = symbols[0]
    if symbol.get("error"):
        return DecodeResult(error=f"{MESSAGE_READ_ERROR}{symbol['error']}")
    data = symbol.get("data")
    if data:
        return DecodeResult(data=str(data))
    return DecodeResult(error=MESSAGE_NO_DATA)


class QRDecodeClient:
    """
    Cliente async del servicio de lectura

    Las llamadas pasan por un circuit breaker: tras varios fallos seguidos el
    servicio se da por caído y se responde DecodeServiceUnavailableError sin
    llamarlo hasta que pase el tiempo de recuperación.
    """

    def __init__(
        self,
        read_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None
    ) -> None:
        self.read_url = read_url or settings.QR_READ_URL
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.QR_DECODE_TIMEOUT,
            transport=transport,
        )
        self.breaker = breaker or CircuitBreaker(
            name="qr-decode",
            failure_threshold=settings.DECODE_BREAKER_THRESHOLD,
            recovery_timeout=settings.DECODE_BREAKER_RECOVERY,
            expected_exception=(httpx.HTTPError, ValueError),
        )

    async def __aenter__(self) -> "QRDecodeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_image(self, image: bytes, filename: str) -> Any:
        response = await self._client.post(
            self.read_url,
            data={"outputformat": "json"},
            files={"file": (filename, image, "image/png")},
        )
        response.raise_for_status()
        return response.json()

    async def _get_by_url(self, url: str) -> Any:
        response = await self._client.get(
            self.read_url,
            params={"fileurl": url, "outputformat": "json"},
        )
        response.raise_for_status()
        return response.json()

    async def _call(self, func, *args) -> DecodeResult:
        try:
            body = await self.breaker.call(func, *args)
        except CircuitOpenError as e:
            raise DecodeServiceUnavailableError("circuito abierto") from e
        except httpx.HTTPError as e:
            logger.warning(f"Fallo del servicio de lectura QR: {e}")
            raise DecodeServiceUnavailableError(str(e) or type(e).__name__) from e
        except ValueError as e:
            logger.warning(f"Respuesta inválida del servicio de lectura QR: {e}")
            raise DecodeServiceUnavailableError("respuesta inválida") from e
        return parse_decode_response(body)

    async def decode_image(self, image: bytes, filename: str = "qr-code.png") -> DecodeResult:
        """Subir una imagen (multipart) y leer su QR"""
        return await self._call(self._post_image, image, filename)

    async def decode_url(self, url: str) -> DecodeResult:
        """Leer el QR de una imagen publicada en una URL"""
        return await self._call(self._get_by_url, url)
