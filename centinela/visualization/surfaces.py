"""
Render Surfaces + Snapshots
===========================

Destino de las imágenes anotadas:
- BufferSurface: guarda la última imagen (snapshots, tests) y opcionalmente
  la reenvía a otro surface
- WindowSurface: ventana OpenCV

save_snapshot(): persiste una imagen anotada en disco (cv2.imwrite).
"""
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional, Union
import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class Surface(ABC):
    """Superficie visual donde el renderer presenta el frame anotado."""

    @abstractmethod
    def present(self, image: np.ndarray) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class BufferSurface(Surface):
    """
    Mantiene la última imagen presentada.

    Args:
        mirror: Surface adicional que recibe cada imagen (ej: WindowSurface)
    """

    def __init__(self, mirror: Optional[Surface] = None):
        self.mirror = mirror
        self.image: Optional[np.ndarray] = None

    def present(self, image: np.ndarray) -> None:
        self.image = image
        if self.mirror is not None:
            self.mirror.present(image)

    def clear(self) -> None:
        self.image = None
        if self.mirror is not None:
            self.mirror.clear()


class WindowSurface(Surface):
    """Ventana OpenCV (cv2.imshow + waitKey(1) para refrescar)."""

    def __init__(self, window_name: str = "Centinela"):
        self.window_name = window_name
        self._open = False

    def present(self, image: np.ndarray) -> None:
        cv2.imshow(self.window_name, image)
        cv2.waitKey(1)
        self._open = True

    def clear(self) -> None:
        if self._open:
            cv2.destroyWindow(self.window_name)
            self._open = False


def save_snapshot(
    image: np.ndarray,
    directory: Union[str, Path],
    prefix: str = "snapshot",
) -> Path:
    """
    Guarda la imagen anotada como JPEG con timestamp.

    Returns:
        Path del archivo escrito

    Raises:
        OSError: Si OpenCV no pudo escribir el archivo
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    path = out_dir / f"{prefix}-{timestamp}.jpg"

    if not cv2.imwrite(str(path), image):
        raise OSError(f"Could not write snapshot: {path}")

    logger.info(
        f"📸 Snapshot guardado: {path}",
        extra={
            "component": "snapshot",
            "event": "snapshot_saved",
            "path": str(path),
        }
    )
    return path
