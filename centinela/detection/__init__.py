"""
Detection data model
"""
from .types import (
    Box,
    Detection,
    DetectionSet,
    DetectionResult,
    ClassificationResult,
    InferenceResult,
    SmoothingState,
    format_label,
)

__all__ = [
    "Box",
    "Detection",
    "DetectionSet",
    "DetectionResult",
    "ClassificationResult",
    "InferenceResult",
    "SmoothingState",
    "format_label",
]
