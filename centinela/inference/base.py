"""
Detection Source Interface
==========================

ABC para todas las fuentes de detección (modelo cargado + inferencia).

Contract:
- detect(frame): Detecciones del frame, suspendible (REQUIRED)
- load()/dispose(): Model Lifecycle, solo en bordes externos al loop
  (inicialización, cambio de modelo, teardown). Nunca a mitad de un tick.
- is_loaded: Si hay un modelo listo para inferir

Sin singletons: cada source es una instancia explícita, pasada por
referencia al FrameLoopController y con lifetime acotado al controller.
"""
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from ..detection.types import DetectionSet
from ..errors import SourceUnavailableError


def is_valid_frame(frame: Any) -> bool:
    """Frame usable: ndarray no vacío, 2D (gris) o 3D (color)."""
    return (
        isinstance(frame, np.ndarray)
        and frame.ndim in (2, 3)
        and frame.size > 0
    )


class DetectionSource(ABC):
    """
    Clase base abstracta para detection sources.

    Implementaciones concretas:
    - UltralyticsDetectionSource: modelos YOLO (detección o clasificación)
    """

    @abstractmethod
    async def detect(self, frame: np.ndarray) -> DetectionSet:
        """
        Ejecuta detección sobre un frame.

        Raises:
            SourceUnavailableError: Si no hay modelo cargado o el frame es inválido
        """
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        pass

    def load(self) -> None:
        """Carga el modelo (default: no-op para sources sin modelo)."""
        pass

    def dispose(self) -> None:
        """Libera el modelo (default: no-op)."""
        pass

    def ensure_ready(self, frame: Any) -> None:
        """
        Raises:
            SourceUnavailableError: Si no hay modelo cargado o el frame es inválido
        """
        if not self.is_loaded:
            raise SourceUnavailableError(
                f"{self.__class__.__name__}: model not loaded"
            )
        if not is_valid_frame(frame):
            raise SourceUnavailableError(
                f"{self.__class__.__name__}: invalid input frame "
                f"({type(frame).__name__})"
            )

    @property
    def model_id(self) -> str:
        return self.__class__.__name__


async def run_detection(source: DetectionSource, frame: np.ndarray) -> DetectionSet:
    """
    detect() con errores normalizados: cualquier fallo del modelo o de la
    librería llega al caller como SourceUnavailableError (causa encadenada).
    """
    try:
        return await source.detect(frame)
    except SourceUnavailableError:
        raise
    except Exception as e:
        raise SourceUnavailableError(f"Detection failed: {e}") from e
