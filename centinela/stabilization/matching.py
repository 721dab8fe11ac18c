"""
Spatial Matching Utilities
==========================

Bounded Context: Spatial Matching (correspondencia frame-a-frame)

Encuentra, para una detección candidata, la detección del frame previo que
representa el mismo objeto:
- Misma clase (obligatorio, sin importar la distancia)
- Distancia entre centros estrictamente menor a max_distance

Política: FIRST match, no best match
- Se recorre `previous` en orden y gana el primero que califica
- Empates no se re-resuelven (no hay asignación bipartita óptima)
- Dos objetos de la misma clase que se cruzan pueden intercambiarse

Performance:
- Coordenadas en píxeles de la imagen fuente
- O(N) por candidato, pure Python (N típico < 20)
"""
import logging
import math
from typing import Optional, Sequence, Tuple

from ..detection.types import Box, Detection

logger = logging.getLogger(__name__)

# Tuned para ~640px de ancho
DEFAULT_MAX_CENTER_DISTANCE = 50.0


def box_center(box: Box) -> Tuple[float, float]:
    """Centro (cx, cy) = (x + width/2, y + height/2)."""
    return box.center


def center_distance(box1: Box, box2: Box) -> float:
    """
    Distancia euclídea entre los centros de dos boxes.

    Properties:
    - Simetría: d(A, B) = d(B, A)
    - Identidad: d(A, A) = 0.0
    - Independiente del tamaño si los centros coinciden

    Example:
        >>> round(center_distance(Box(10, 10, 100, 200), Box(12, 11, 101, 199)), 2)
        2.55
    """
    cx1, cy1 = box1.center
    cx2, cy2 = box2.center
    return math.hypot(cx1 - cx2, cy1 - cy2)


def match_detection(
    previous: Sequence[Detection],
    candidate: Detection,
    max_distance: float = DEFAULT_MAX_CENTER_DISTANCE,
) -> Optional[Detection]:
    """
    Retorna la primera detección de `previous` que matchea `candidate`.

    Args:
        previous: Detecciones suavizadas del tick anterior (en orden)
        candidate: Detección cruda del tick actual
        max_distance: Umbral de distancia entre centros (estricto, <)

    Returns:
        Detection previa matcheada, o None si ninguna califica

    Note:
        Función pura, sin side effects.
    """
    for prev in previous:
        if prev.class_label != candidate.class_label:
            continue
        if center_distance(prev.box, candidate.box) < max_distance:
            return prev
    return None


class CenterDistanceMatcher:
    """
    Matcher por clase + distancia de centros (first-match).

    Usage:
        matcher = CenterDistanceMatcher(max_distance=50.0)
        prev = matcher.match(state.detections, candidate)
    """

    def __init__(self, max_distance: float = DEFAULT_MAX_CENTER_DISTANCE):
        if max_distance <= 0:
            raise ValueError(f"max_distance must be > 0, got {max_distance}")
        self.max_distance = max_distance

    def match(
        self,
        previous: Sequence[Detection],
        candidate: Detection,
    ) -> Optional[Detection]:
        matched = match_detection(previous, candidate, self.max_distance)

        if matched is not None:
            logger.debug(
                "Match found",
                extra={
                    "component": "box_matcher",
                    "event": "match_found",
                    "class_name": candidate.class_label,
                    "distance": round(center_distance(matched.box, candidate.box), 2),
                }
            )

        return matched

    def __repr__(self) -> str:
        return f"CenterDistanceMatcher(max_distance={self.max_distance})"
