"""
Centinela - Stabilized Real-Time Object Detection
=================================================

Detección de objetos (YOLO) sobre cámara o imagen, con suavizado temporal
de bounding boxes para un overlay estable frame a frame.

Public API:
- CentinelaConfig: Configuración del sistema (YAML + Pydantic)
- CaptureController: Controlador principal
- FrameLoopController: Loop cooperativo start/stop/fault
- ExponentialSmoother / smooth: Suavizado temporal
- MQTTControlPlane: Control plane (QoS 1)

Usage:
    # Run main app
    python -m centinela --config config/centinela/config.yaml

    # Or programmatically
    from centinela import CentinelaConfig, CaptureController

    controller = CaptureController(CentinelaConfig.load())
    asyncio.run(controller.run())
"""

__version__ = "1.0.0"

from .config import CentinelaConfig
from .detection import Box, ClassificationResult, Detection, DetectionResult, SmoothingState
from .errors import (
    AlreadyRunningError,
    CentinelaError,
    MalformedDetectionError,
    RenderError,
    SourceUnavailableError,
)
from .stabilization import ExponentialSmoother, NoOpSmoother, create_smoother, match_detection, smooth
from .app import CaptureController, FrameLoopController, LoopHandle, LoopState, main
from .control import MQTTControlPlane

__all__ = [
    # Config
    "CentinelaConfig",
    # Data model
    "Box",
    "Detection",
    "DetectionResult",
    "ClassificationResult",
    "SmoothingState",
    # Errors
    "CentinelaError",
    "MalformedDetectionError",
    "SourceUnavailableError",
    "AlreadyRunningError",
    "RenderError",
    # Stabilization
    "ExponentialSmoother",
    "NoOpSmoother",
    "create_smoother",
    "match_detection",
    "smooth",
    # App
    "CaptureController",
    "FrameLoopController",
    "LoopHandle",
    "LoopState",
    "main",
    # Control Plane
    "MQTTControlPlane",
]
