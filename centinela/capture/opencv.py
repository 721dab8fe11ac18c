"""
OpenCV Frame Providers
======================

- CameraFrameProvider: stream en vivo (cv2.VideoCapture)
- StaticImageFrameProvider: imagen única desde disco (modo single-shot / galería)

Las lecturas bloqueantes de la cámara corren en un thread dedicado por cámara
para no bloquear el event loop entre ticks. Ese mismo thread hace el
release(): una lectura en vuelo siempre termina antes de liberar el device.
"""
import asyncio
import concurrent.futures
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import cv2
import numpy as np

from ..errors import SourceUnavailableError
from .base import FrameProvider

logger = logging.getLogger(__name__)


def resolve_camera_device(facing: str, devices: Dict[str, int]) -> int:
    """
    Traduce la orientación de cámara ('user' / 'environment') al índice de dispositivo.

    Raises:
        ValueError: Si la orientación no está mapeada
    """
    try:
        return devices[facing]
    except KeyError:
        available = ', '.join(sorted(devices))
        raise ValueError(
            f"Camera facing '{facing}' not configured. Available: {available}"
        ) from None


class CameraFrameProvider(FrameProvider):
    """
    Cámara en vivo vía OpenCV.

    Semántica de read():
    - Lectura fallida → None ("todavía no listo"), el loop reintenta
    - Más de max_failed_reads fallos consecutivos → SourceUnavailableError

    read() y close() pasan por el mismo executor de un solo worker: close()
    con una lectura en vuelo agenda el release detrás de esa lectura (el
    device nunca se libera mientras otro thread lo lee).
    """

    def __init__(
        self,
        device: int = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
        max_failed_reads: int = 30,
    ):
        self.device = device
        self.width = width
        self.height = height
        self.max_failed_reads = max_failed_reads

        self._capture: Optional[cv2.VideoCapture] = None
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._failed_reads = 0
        self.frames_read = 0

    def open(self) -> None:
        if self._capture is not None:
            return

        logger.info(f"📷 Abriendo cámara (device={self.device})")
        capture = cv2.VideoCapture(self.device)
        if not capture.isOpened():
            capture.release()
            raise SourceUnavailableError(f"Camera device {self.device} could not be opened")

        if self.width:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        self._capture = capture
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"camera-{self.device}",
        )
        self._failed_reads = 0
        logger.info(
            "Camera opened",
            extra={
                "component": "frame_provider",
                "event": "camera_opened",
                "device": self.device,
            }
        )

    async def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            raise SourceUnavailableError(f"Camera device {self.device} is not open")

        ok, frame = await asyncio.get_running_loop().run_in_executor(self._executor, self._capture.read)

        if not ok or frame is None:
            self._failed_reads += 1
            if self._failed_reads > self.max_failed_reads:
                raise SourceUnavailableError(
                    f"Camera device {self.device} returned no frames "
                    f"({self._failed_reads} consecutive failed reads)"
                )
            return None

        self._failed_reads = 0
        self.frames_read += 1
        return frame

    def close(self) -> None:
        """
        Libera la cámara. No bloquea: el release corre en el thread de la
        cámara, después de la lectura en vuelo (si la hay).
        """
        if self._capture is None:
            return

        capture, self._capture = self._capture, None
        executor, self._executor = self._executor, None

        executor.submit(self._release, capture)
        executor.shutdown(wait=False)

    def _release(self, capture: cv2.VideoCapture) -> None:
        capture.release()
        logger.info(f"📷 Cámara liberada (device={self.device})")

    @property
    def description(self) -> str:
        return f"camera:{self.device}"


class StaticImageFrameProvider(FrameProvider):
    """
    Imagen estática (foto capturada o elegida de la galería).

    Cada read() retorna una copia, así el renderer puede dibujar sin
    contaminar el original.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._image: Optional[np.ndarray] = None

    def open(self) -> None:
        if self._image is not None:
            return

        image = cv2.imread(str(self.path))
        if image is None:
            raise SourceUnavailableError(f"Image could not be read: {self.path}")

        self._image = image
        logger.info(
            "Static image loaded",
            extra={
                "component": "frame_provider",
                "event": "image_loaded",
                "path": str(self.path),
                "shape": list(image.shape),
            }
        )

    async def read(self) -> Optional[np.ndarray]:
        if self._image is None:
            self.open()
        return self._image.copy()

    def close(self) -> None:
        self._image = None

    @property
    def description(self) -> str:
        return f"image:{self.path.name}"
