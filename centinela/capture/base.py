"""
Frame Provider Interface
========================

ABC para todas las fuentes de frames (cámara en vivo, imagen estática).

Contract:
- read(): Frame actual o None si la fuente todavía no está lista (REQUIRED)
- frame(): Adquisición con scope; release() garantizado en cualquier salida
- open()/close(): Lifecycle de la fuente (OPTIONAL, default no-op)

Frames: np.ndarray BGR (formato OpenCV).
"""
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import numpy as np


class FrameProvider(ABC):
    """
    Clase base abstracta para frame providers.

    Usage:
        async with provider.frame() as frame:
            if frame is None:
                return  # cámara no lista, reintentar en el próximo tick
            detections = await source.detect(frame)
    """

    @abstractmethod
    async def read(self) -> Optional[np.ndarray]:
        """
        Returns:
            Frame BGR, o None si todavía no hay frame disponible

        Raises:
            SourceUnavailableError: Si la fuente falló de forma irrecuperable
        """
        pass

    def release(self, frame: Optional[np.ndarray]) -> None:
        """Libera recursos transitorios del frame (override si aplica)."""
        pass

    @asynccontextmanager
    async def frame(self) -> AsyncIterator[Optional[np.ndarray]]:
        frame = await self.read()
        try:
            yield frame
        finally:
            self.release(frame)

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    @property
    def description(self) -> str:
        return self.__class__.__name__
