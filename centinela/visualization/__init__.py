"""
Visualization - annotation renderer, surfaces, snapshots
"""
from .renderer import AnnotationRenderer, OpenCVAnnotationRenderer, draw_detection
from .surfaces import BufferSurface, Surface, WindowSurface, save_snapshot

__all__ = [
    "AnnotationRenderer",
    "OpenCVAnnotationRenderer",
    "draw_detection",
    "Surface",
    "BufferSurface",
    "WindowSurface",
    "save_snapshot",
]
