"""
Loop de escaneo de QR

Un ScanLoop toma imágenes de una FrameSource, las envía al servicio de
lectura y se detiene con la primera lectura que trae datos. Cada tick corre
como una tarea en segundo plano que publica su resultado en un canal
(asyncio.Queue); el controlador consume el canal y decide. La cancelación es
una señal en el mismo canal, nunca un kill de la tarea en curso a ciegas.

Terminan el loop: una lectura con datos, cancel() y el cierre del contexto
(ScanSessionManager.close_all). Las tres son idempotentes.
"""
from typing import Any, Dict, Optional, Set, Tuple
import asyncio
import logging
import time

from app.core.config import settings
from services.checkin.models.checkin import ScanOutcome, ScanStatus
from services.checkin.services.checkin_service import CheckInValidator
from services.checkin.services.decode_client import DecodeResult, QRDecodeClient
from services.checkin.services.frame_sources import (
    CaptureDeviceLostError,
    FrameCaptureError,
    FrameSource,
)
from shared.errors import DecodeServiceUnavailableError

logger = logging.getLogger(__name__)

_STOP = "stop"
_RESULT = "result"
_SOFT_ERROR = "soft_error"
_DEVICE_LOST = "device_lost"


class ScanLoop:
    """Escaneo cancelable de una fuente de imágenes"""

    def __init__(
        self,
        source: FrameSource,
        client: QRDecodeClient,
        validator: Optional[CheckInValidator] = None,
        interval: Optional[float] = None
    ) -> None:
        self.source = source
        self.client = client
        self.validator = validator
        self.interval = settings.SCAN_INTERVAL_SECONDS if interval is None else interval

        self.outcome: Optional[ScanOutcome] = None
        self.finished_at: Optional[float] = None  # time.monotonic() del resultado final
        self.ticks = 0
        self._channel: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._stopped = asyncio.Event()
        self._runner: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._released = False

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def _tick(self) -> None:
        """Capturar y leer una imagen; el resultado va al canal"""
        try:
            result = await self.source.submit(self.client)
        except CaptureDeviceLostError as e:
            self._channel.put_nowait((_DEVICE_LOST, str(e)))
        except (FrameCaptureError, DecodeServiceUnavailableError) as e:
            self._channel.put_nowait((_SOFT_ERROR, str(e)))
        except Exception as e:
            logger.error(f"Error inesperado en tick de escaneo: {e}", exc_info=True)
            self._channel.put_nowait((_SOFT_ERROR, str(e)))
        else:
            self._channel.put_nowait((_RESULT, result))

    def _spawn_tick(self) -> None:
        if self._inflight:
            # La captura anterior sigue en curso: no se solapan accesos al dispositivo
            logger.debug("Tick omitido, lectura anterior en curso")
            return
        self.ticks += 1
        task = asyncio.create_task(self._tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _outcome_for(self, result: DecodeResult) -> ScanOutcome:
        if not result.has_data:
            return ScanOutcome(status=ScanStatus.NO_CODE, message=result.error or "")

        validation = None
        if self.validator is not None:
            validation = await self.validator.validate_payload(result.data)
        return ScanOutcome(
            status=ScanStatus.DECODED,
            data=result.data,
            message=validation.message if validation else "Código QR leído",
            validation=validation,
        )

    async def _handle(self, kind: str, value: Any) -> bool:
        """Procesar un mensaje del canal. True si el loop debe terminar."""
        if kind == _STOP:
            self._finish(ScanOutcome(status=ScanStatus.CANCELLED, message="Escaneo cancelado"))
            return True
        if kind == _DEVICE_LOST:
            logger.warning(f"Dispositivo de captura perdido: {value}")
            self._finish(ScanOutcome(status=ScanStatus.DEVICE_LOST, message=value))
            return True
        if kind == _SOFT_ERROR:
            logger.warning(f"Tick de escaneo fallido: {value}")
            self.outcome = ScanOutcome(status=ScanStatus.ERROR, message=value)
            return False

        outcome = await self._outcome_for(value)
        if outcome.status == ScanStatus.DECODED:
            # Se detiene con cualquier lectura con datos, aunque el ticket ya haya ingresado
            self._finish(outcome)
            return True
        self.outcome = outcome
        return False

    def _finish(self, outcome: ScanOutcome) -> None:
        if not self._stopped.is_set():
            self.outcome = outcome
            self.finished_at = time.monotonic()
            self._stopped.set()

    async def _teardown(self) -> None:
        """Cancelar ticks pendientes y liberar la fuente (idempotente)"""
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if not self._released:
            self._released = True
            await self.source.release()

    async def run_once(self) -> ScanOutcome:
        """Modo single-shot: una captura, una lectura, fin"""
        try:
            await self.source.acquire()
            await self._tick()
            kind, value = self._channel.get_nowait()
            if not await self._handle(kind, value):
                self._finish(self.outcome)
            return self.outcome
        except CaptureDeviceLostError as e:
            self._finish(ScanOutcome(status=ScanStatus.DEVICE_LOST, message=str(e)))
            return self.outcome
        finally:
            await self._teardown()

    async def _run(self) -> ScanOutcome:
        if self._stopped.is_set():
            return self.outcome
        loop = asyncio.get_running_loop()
        try:
            await self.source.acquire()
        except CaptureDeviceLostError as e:
            self._finish(ScanOutcome(status=ScanStatus.DEVICE_LOST, message=str(e)))
            await self._teardown()
            return self.outcome

        try:
            while not self._stopped.is_set():
                self._spawn_tick()
                deadline = loop.time() + self.interval
                while not self._stopped.is_set():
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        break
                    try:
                        kind, value = await asyncio.wait_for(self._channel.get(), timeout)
                    except asyncio.TimeoutError:
                        break
                    await self._handle(kind, value)
            return self.outcome
        finally:
            await self._teardown()

    def start(self) -> asyncio.Task:
        """Arrancar el modo continuo en segundo plano"""
        if self._runner is None:
            self._runner = asyncio.create_task(self._run())
        return self._runner

    async def cancel(self) -> None:
        """Detener el loop y liberar la fuente; seguro en cualquier estado"""
        if self.running:
            self._channel.put_nowait((_STOP, None))
            await asyncio.gather(self._runner, return_exceptions=True)
        else:
            self._finish(ScanOutcome(status=ScanStatus.CANCELLED, message="Escaneo cancelado"))
            await self._teardown()

    async def wait(self, timeout: Optional[float] = None) -> Optional[ScanOutcome]:
        """Esperar el final del modo continuo"""
        if self._runner is None:
            return self.outcome
        return await asyncio.wait_for(asyncio.shield(self._runner), timeout)


class ScanSessionManager:
    """
    Un único ScanLoop activo por sesión de cliente

    start/stop/close_all se serializan con un lock: entre leer el loop previo,
    cancelarlo y registrar el nuevo hay awaits, y dos start simultáneos no
    pueden dejar un loop huérfano con la cámara tomada.

    Un loop terminado se entrega una vez con collect() y sale del registro;
    los que nadie consulta se descartan pasado `retention` segundos.
    """

    def __init__(self, retention: Optional[float] = None) -> None:
        self._sessions: Dict[str, ScanLoop] = {}
        self._lock = asyncio.Lock()
        self.retention = settings.SCAN_SESSION_RETENTION_SECONDS if retention is None else retention

    def _prune(self) -> None:
        now = time.monotonic()
        stale = [
            session_id for session_id, loop in self._sessions.items()
            if not loop.running
            and loop.finished_at is not None
            and now - loop.finished_at >= self.retention
        ]
        for session_id in stale:
            del self._sessions[session_id]
        if stale:
            logger.info(f"{len(stale)} sesiones de escaneo terminadas descartadas")

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[ScanLoop]:
        self._prune()
        return self._sessions.get(session_id)

    def collect(self, session_id: str) -> Optional[ScanLoop]:
        """Loop de la sesión; si ya terminó, se quita del registro al entregarlo"""
        loop = self.get(session_id)
        if loop is not None and not loop.running and loop.outcome is not None:
            del self._sessions[session_id]
        return loop

    async def start(self, session_id: str, loop: ScanLoop) -> ScanLoop:
        """Arrancar un loop para la sesión, cancelando el anterior si existe"""
        async with self._lock:
            self._prune()
            previous = self._sessions.pop(session_id, None)
            if previous is not None:
                logger.info(f"Cancelando escaneo previo de la sesión {session_id}")
                await previous.cancel()
            self._sessions[session_id] = loop
            loop.start()
        return loop

    async def stop(self, session_id: str) -> Optional[ScanOutcome]:
        async with self._lock:
            loop = self._sessions.pop(session_id, None)
            if loop is None:
                return None
            await loop.cancel()
        return loop.outcome

    async def close_all(self) -> None:
        """Cierre del contexto anfitrión: cancela y libera todas las sesiones"""
        async with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()
            for session_id, loop in sessions:
                await loop.cancel()
        if sessions:
            logger.info(f"{len(sessions)} sesiones de escaneo cerradas")
