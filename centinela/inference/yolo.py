"""
YOLO Detection Source - Ultralytics Models
==========================================

Adaptador para modelos YOLO (PyTorch .pt u ONNX) vía Ultralytics, con
conversión de resultados usando supervision.

Features:
- Model lifecycle explícito (load / dispose), sin estado global
- Variant de resultado resuelto UNA vez al cargar (detect vs classify)
- Inferencia fuera del event loop (asyncio.to_thread)

Usage:
    source = UltralyticsDetectionSource("models/yolo11n.pt", imgsz=640)
    source.load()
    detections = await source.detect(frame)
    source.dispose()
"""
import asyncio
import enum
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

import numpy as np
import supervision as sv
from ultralytics import YOLO

from ..detection.types import (
    Box,
    ClassificationResult,
    Detection,
    DetectionResult,
    DetectionSet,
    InferenceResult,
)
from ..errors import SourceUnavailableError
from .base import DetectionSource

logger = logging.getLogger(__name__)


class ModelKind(enum.Enum):
    DETECTION = "detect"
    CLASSIFICATION = "classify"


# ============================================================================
# Result Conversion
# ============================================================================

def detections_from_supervision(detections: sv.Detections) -> DetectionSet:
    """
    Convierte sv.Detections (xyxy) a Detection (x, y, width, height).

    El nombre de clase sale de data['class_name'] (from_ultralytics) y, si no
    existe, del class_id.
    """
    class_names = detections.data.get('class_name') if detections.data else None
    result: DetectionSet = []

    for idx, (x1, y1, x2, y2) in enumerate(detections.xyxy):
        if class_names is not None:
            label = str(class_names[idx])
        elif detections.class_id is not None:
            label = str(detections.class_id[idx])
        else:
            label = 'unknown'

        confidence = (
            float(detections.confidence[idx])
            if detections.confidence is not None
            else 0.0
        )

        result.append(
            Detection(
                class_label=label,
                confidence=confidence,
                box=Box(float(x1), float(y1), float(x2 - x1), float(y2 - y1)),
            )
        )

    return result


def classification_from_ultralytics(result: Any) -> ClassificationResult:
    """Top-1 de un resultado de clasificación de Ultralytics."""
    probs = result.probs
    if probs is None:
        raise SourceUnavailableError("Classification model returned no probabilities")

    top1 = int(probs.top1)
    return ClassificationResult(
        class_label=str(result.names[top1]),
        confidence=float(probs.top1conf),
    )


def _decode_detection(result: Any) -> InferenceResult:
    detections = sv.Detections.from_ultralytics(result)
    return DetectionResult(tuple(detections_from_supervision(detections)))


_DECODERS = {
    ModelKind.DETECTION: _decode_detection,
    ModelKind.CLASSIFICATION: classification_from_ultralytics,
}


# ============================================================================
# Detection Source
# ============================================================================

class UltralyticsDetectionSource(DetectionSource):
    """
    Detection source sobre un modelo Ultralytics YOLO.

    Attributes:
        model_path: Path al modelo (.pt / .onnx) o nombre de modelo oficial
        imgsz: Tamaño de imagen para inferencia
        confidence: Confidence mínima del modelo (pre-filtro, antes del smoother)
        iou_threshold: IoU para NMS
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        imgsz: int = 640,
        confidence: float = 0.25,
        iou_threshold: float = 0.45,
    ):
        self.model_path = Path(model_path)
        self.imgsz = imgsz
        self.confidence = confidence
        self.iou_threshold = iou_threshold

        self._model: Optional[YOLO] = None
        self._kind: Optional[ModelKind] = None
        self._decode: Optional[Callable[[Any], InferenceResult]] = None

    # ------------------------------------------------------------------
    # Model Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Carga el modelo y resuelve su variant de resultado.

        Raises:
            FileNotFoundError: Si el path tiene directorio y el archivo no existe
            ValueError: Si la tarea del modelo no está soportada
        """
        # Nombres sueltos (ej: 'yolo11n.pt') los descarga Ultralytics
        if self.model_path.parent != Path('.') and not self.model_path.exists():
            raise FileNotFoundError(f"Modelo no encontrado: {self.model_path}")

        logger.info(
            "Loading model",
            extra={
                "component": "detection_source",
                "event": "model_load_start",
                "model_path": str(self.model_path),
                "imgsz": self.imgsz,
            }
        )

        model = YOLO(str(self.model_path))
        task = getattr(model, 'task', ModelKind.DETECTION.value)

        try:
            kind = ModelKind(task)
        except ValueError:
            raise ValueError(
                f"Unsupported model task '{task}' for {self.model_path.name}. "
                f"Supported: {', '.join(k.value for k in ModelKind)}"
            ) from None

        self._model = model
        self._kind = kind
        self._decode = _DECODERS[kind]

        logger.info(
            f"✅ Modelo cargado: {self.model_path.name} ({kind.value})",
            extra={
                "component": "detection_source",
                "event": "model_load_success",
                "model_name": self.model_path.name,
                "task": kind.value,
            }
        )

    def dispose(self) -> None:
        if self._model is None:
            return

        self._model = None
        self._kind = None
        self._decode = None
        logger.info(f"🧹 Modelo liberado: {self.model_path.name}")

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def kind(self) -> Optional[ModelKind]:
        return self._kind

    @property
    def model_id(self) -> str:
        return self.model_path.stem

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _predict(self, frame: np.ndarray) -> InferenceResult:
        try:
            results = self._model.predict(
                frame,
                conf=self.confidence,
                iou=self.iou_threshold,
                imgsz=self.imgsz,
                verbose=False,
            )
        except RuntimeError as e:
            raise SourceUnavailableError(f"Inference failed on {self.model_id}: {e}") from e

        if len(results) == 0:
            return DetectionResult()

        return self._decode(results[0])

    async def infer(self, frame: np.ndarray) -> InferenceResult:
        """Resultado tipado (DetectionResult | ClassificationResult)."""
        self.ensure_ready(frame)
        return await asyncio.to_thread(self._predict, frame)

    async def detect(self, frame: np.ndarray) -> DetectionSet:
        result = await self.infer(frame)
        return result.to_detections(frame.shape)
