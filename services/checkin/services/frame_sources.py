"""Fuentes de imagen para el escaneo de QR (bytes, archivo, URL, cámara)"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import asyncio
import logging

from services.checkin.services.decode_client import DecodeResult, QRDecodeClient

logger = logging.getLogger(__name__)


class FrameCaptureError(Exception):
    """No se pudo capturar este frame; el siguiente tick puede funcionar"""


class CaptureDeviceLostError(Exception):
    """El dispositivo de captura ya no está disponible; el escaneo termina"""


class FrameSource(ABC):
    """
    Origen de imágenes para un ScanLoop

    release() es idempotente y se puede llamar en cualquier estado.
    """

    async def acquire(self) -> None:
        """Abrir el recurso de captura (no-op para fuentes estáticas)"""

    @abstractmethod
    async def submit(self, client: QRDecodeClient) -> DecodeResult:
        """Capturar una imagen y enviarla al servicio de lectura"""
        ...

    async def release(self) -> None:
        """Liberar el recurso de captura"""


class ImageBytesSource(FrameSource):
    """Imagen subida por el operador"""

    def __init__(self, image: bytes, filename: str = "qr-code.png") -> None:
        self.image = image
        self.filename = filename

    async def submit(self, client: QRDecodeClient) -> DecodeResult:
        if not self.image:
            raise FrameCaptureError("imagen vacía")
        return await client.decode_image(self.image, self.filename)


class ImageFileSource(FrameSource):
    """Imagen en disco"""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    async def submit(self, client: QRDecodeClient) -> DecodeResult:
        try:
            image = await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise FrameCaptureError(f"no se pudo leer {self.path}: {e}") from e
        return await client.decode_image(image, self.path.name)


class UrlSource(FrameSource):
    """Imagen publicada en una URL; la descarga la hace el servicio de lectura"""

    def __init__(self, url: str) -> None:
        self.url = url

    async def submit(self, client: QRDecodeClient) -> DecodeResult:
        return await client.decode_url(self.url)


class CameraSource(FrameSource):
    """
    Cámara local vía OpenCV (extra `camera`)

    Cada tick captura el frame actual, lo codifica como PNG y lo sube al
    servicio de lectura. Las llamadas a OpenCV son bloqueantes y corren en
    un thread.
    """

    def __init__(self, device_index: int = 0) -> None:
        self.device_index = device_index
        self._capture = None
        self._cv2 = None

    async def acquire(self) -> None:
        if self._capture is not None:
            return
        try:
            import cv2
        except ImportError as e:
            raise CaptureDeviceLostError("OpenCV no está instalado (extra 'camera')") from e

        capture = await asyncio.to_thread(cv2.VideoCapture, self.device_index)
        if not capture.isOpened():
            capture.release()
            raise CaptureDeviceLostError(f"no se pudo abrir la cámara {self.device_index}")
        self._cv2 = cv2
        self._capture = capture
        logger.info(f"Cámara {self.device_index} abierta")

    def _grab_png(self) -> bytes:
        capture = self._capture
        if capture is None or not capture.isOpened():
            raise CaptureDeviceLostError("cámara liberada o desconectada")
        ok, frame = capture.read()
        if not ok or frame is None:
            raise FrameCaptureError("no se pudo leer un frame")
        ok, buffer = self._cv2.imencode(".png", frame)
        if not ok:
            raise FrameCaptureError("no se pudo codificar el frame")
        return buffer.tobytes()

    async def submit(self, client: QRDecodeClient) -> DecodeResult:
        image = await asyncio.to_thread(self._grab_png)
        return await client.decode_image(image, "qr-code.png")

    async def release(self) -> None:
        capture: Optional[object] = self._capture
        self._capture = None
        if capture is not None:
            await asyncio.to_thread(capture.release)
            logger.info(f"Cámara {self.device_index} liberada")
