"""
Inference Module - detection sources and model lifecycle
"""
from .base import DetectionSource, is_valid_frame, run_detection

__all__ = [
    "DetectionSource",
    "is_valid_frame",
    "run_detection",
]
