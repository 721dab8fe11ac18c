"""
Detection Types
===============

Modelo de datos compartido por matcher, smoother, loop y renderer.

Coordenadas:
- Box en píxeles de la imagen fuente, origen arriba-izquierda
- (x, y) es la esquina superior izquierda, NO el centro

Variant de resultados del modelo:
- DetectionResult: modelos de detección (lista de boxes)
- ClassificationResult: modelos de clasificación (una etiqueta por imagen)
El variant se resuelve una sola vez al cargar el modelo (ver inference/).
"""
from dataclasses import dataclass, field
from typing import List, NamedTuple, Tuple, Union


class Box(NamedTuple):
    """Rectángulo alineado a ejes (x, y, width, height)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0


@dataclass(frozen=True)
class Detection:
    """Una instancia observada de un objeto en un frame."""
    class_label: str
    confidence: float
    box: Box

    @property
    def label_text(self) -> str:
        """Texto del overlay, ej: 'dog (87.34%)'."""
        return format_label(self.class_label, self.confidence)


# Lista ordenada de detecciones de un tick (se permiten duplicados de clase)
DetectionSet = List[Detection]


def format_label(class_label: str, confidence: float) -> str:
    return f"{class_label} ({confidence * 100:.2f}%)"


# ============================================================================
# Model Result Variant
# ============================================================================

@dataclass(frozen=True)
class DetectionResult:
    """Resultado de un modelo de detección."""
    detections: Tuple[Detection, ...] = ()

    def to_detections(self, frame_shape: Tuple[int, ...]) -> DetectionSet:
        return list(self.detections)


@dataclass(frozen=True)
class ClassificationResult:
    """
    Resultado de un modelo de clasificación (top-1).

    Se convierte a una única detección que cubre todo el frame, así el loop
    solo maneja DetectionSet.
    """
    class_label: str
    confidence: float

    def to_detections(self, frame_shape: Tuple[int, ...]) -> DetectionSet:
        height, width = frame_shape[:2]
        return [
            Detection(
                class_label=self.class_label,
                confidence=self.confidence,
                box=Box(0.0, 0.0, float(width), float(height)),
            )
        ]


InferenceResult = Union[DetectionResult, ClassificationResult]


# ============================================================================
# Smoothing State
# ============================================================================

@dataclass(frozen=True)
class SmoothingState:
    """
    Último DetectionSet suavizado (referencia del frame previo).

    Lifecycle:
    - Vacío al iniciar el loop
    - Reemplazado completo en cada tick
    - Limpiado al parar/resetear el loop
    """
    detections: Tuple[Detection, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> 'SmoothingState':
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.detections

    def __len__(self) -> int:
        return len(self.detections)
