"""
Annotation Rendering
====================

Render simple de detecciones suavizadas sobre el frame:
- Bounding box
- Etiqueta "clase (87.34%)" con fondo
- Conteo de detecciones (opcional)

Philosophy: KISS
- El renderer dibuja sobre una copia del frame y la entrega a un Surface
- El Surface decide dónde termina la imagen (ventana, buffer, ...)
- Sin contrato de retorno: es un sink puro
"""
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from ..detection.types import Detection, DetectionSet
from .surfaces import Surface


# ============================================================================
# Color Palette (BGR format for OpenCV)
# ============================================================================
COLORS = {
    'bbox': (136, 255, 0),      # Verde agua para detecciones
    'text_bg': (0, 0, 0),       # Negro para fondo de texto
    'text_fg': (136, 255, 0),   # Mismo verde para el texto
    'stats_fg': (255, 255, 255),
}


# ============================================================================
# Drawing Utilities
# ============================================================================

def draw_detection(image: np.ndarray, detection: Detection, color: tuple = COLORS['bbox']) -> None:
    """
    Dibuja una bounding box con etiqueta.

    Args:
        image: Frame donde dibujar (se modifica in-place)
        detection: Detection con box (x, y, width, height) top-left
        color: Color BGR para la bbox
    """
    x, y, width, height = detection.box
    x1, y1 = int(round(x)), int(round(y))
    x2, y2 = int(round(x + width)), int(round(y + height))

    cv2.rectangle(image, (x1, y1), (x2, y2), color, 2)

    label = detection.label_text
    font = cv2.FONT_HERSHEY_SIMPLEX
    font_scale = 0.5
    thickness = 1

    (text_w, text_h), _ = cv2.getTextSize(label, font, font_scale, thickness)

    # Etiqueta arriba del box (o adentro si no hay espacio)
    label_top = y1 - text_h - 8
    if label_top < 0:
        label_top = y1

    cv2.rectangle(
        image,
        (x1, label_top),
        (x1 + text_w + 10, label_top + text_h + 8),
        COLORS['text_bg'],
        -1
    )

    cv2.putText(
        image,
        label,
        (x1 + 5, label_top + text_h + 3),
        font,
        font_scale,
        COLORS['text_fg'],
        thickness
    )


def draw_stats_overlay(image: np.ndarray, detection_count: int, frame_id: Optional[int] = None) -> None:
    """Conteo de detecciones (y frame) en la esquina superior derecha."""
    text = f"Detections: {detection_count}"
    if frame_id is not None:
        text += f" | Frame: {frame_id}"

    font = cv2.FONT_HERSHEY_SIMPLEX
    (text_w, text_h), _ = cv2.getTextSize(text, font, 0.5, 1)
    x = max(image.shape[1] - text_w - 10, 0)

    cv2.rectangle(image, (x - 5, 0), (image.shape[1], text_h + 12), COLORS['text_bg'], -1)
    cv2.putText(image, text, (x, text_h + 5), font, 0.5, COLORS['stats_fg'], 1)


# ============================================================================
# Renderers
# ============================================================================

class AnnotationRenderer(ABC):
    """
    Sink de anotaciones.

    Contract:
    - render(detections, frame, surface): dibuja y presenta (REQUIRED)
    - clear(surface): vuelve al estado sin overlay (REQUIRED)
    """

    @abstractmethod
    def render(self, detections: DetectionSet, frame: np.ndarray, surface: Surface) -> None:
        pass

    @abstractmethod
    def clear(self, surface: Surface) -> None:
        pass


class OpenCVAnnotationRenderer(AnnotationRenderer):
    """Renderer OpenCV: boxes + etiquetas + conteo opcional."""

    def __init__(self, show_statistics: bool = True):
        self.show_statistics = show_statistics
        self.frames_rendered = 0

    def annotate(self, detections: DetectionSet, frame: np.ndarray) -> np.ndarray:
        """Copia anotada del frame (el original no se modifica)."""
        canvas = frame.copy()

        for detection in detections:
            draw_detection(canvas, detection)

        if self.show_statistics:
            draw_stats_overlay(canvas, len(detections), self.frames_rendered)

        return canvas

    def render(self, detections: DetectionSet, frame: np.ndarray, surface: Surface) -> None:
        canvas = self.annotate(detections, frame)
        surface.present(canvas)
        self.frames_rendered += 1

    def clear(self, surface: Surface) -> None:
        surface.clear()
