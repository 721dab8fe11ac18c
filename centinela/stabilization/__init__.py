"""
Detection Stabilization - Temporal smoothing to reduce flickering

Modularized Package:
- matching.py: Spatial matching (class + center distance, first match)
- smoothing.py: Exponential smoother, config, factory

Public API:
- Strategies: ExponentialSmoother, NoOpSmoother
- Factory: create_smoother
- Pure functions: smooth, match_detection, center_distance
"""

# Matching utilities (spatial correspondence)
from .matching import (
    CenterDistanceMatcher,
    center_distance,
    match_detection,
)

# Core smoothing (strategies, config, factory)
from .smoothing import (
    BaseDetectionSmoother,
    SmoothingConfig,
    ExponentialSmoother,
    NoOpSmoother,
    create_smoother,
    discard_malformed,
    smooth,
)

__all__ = [
    # Core classes
    "BaseDetectionSmoother",
    "SmoothingConfig",
    "ExponentialSmoother",
    "NoOpSmoother",

    # Factory functions
    "create_smoother",

    # Pure functions
    "smooth",
    "discard_malformed",
    "match_detection",
    "center_distance",
    "CenterDistanceMatcher",
]
