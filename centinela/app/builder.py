"""
Capture Builder
===============

Builder pattern para construir los componentes del capture pipeline.

Responsabilidad:
- Construir smoother + frame loop controller
- Construir detection source (modelo)
- Construir frame providers (cámara / imagen)
- Construir renderer + surface
- Construir control plane (si está habilitado)

Diseño:
- Builder construye, Controller orquesta lifecycle
- Controller no conoce detalles de construcción
"""
from typing import Callable, Optional, Tuple

from ..capture import CameraFrameProvider, FrameProvider, StaticImageFrameProvider, resolve_camera_device
from ..config import CentinelaConfig
from ..control import MQTTControlPlane
from ..inference.base import DetectionSource
from ..logging import get_component_logger
from ..stabilization import BaseDetectionSmoother, SmoothingConfig, create_smoother
from ..visualization import BufferSurface, OpenCVAnnotationRenderer, WindowSurface
from .loop import AsyncioTickScheduler, FrameLoopController, LoopHandle, TickScheduler

logger = get_component_logger("builder")


class CaptureBuilder:
    """
    Builder de componentes a partir de CentinelaConfig.

    Usage:
        builder = CaptureBuilder(config)
        smoother = builder.build_smoother()
        loop = builder.build_loop(smoother, on_fault=controller._on_fault)
        source = builder.build_source()
        renderer, surface = builder.build_renderer()
    """

    def __init__(self, config: CentinelaConfig):
        self.config = config

    def build_smoother(self) -> BaseDetectionSmoother:
        """Construye smoother según config.smoothing (delegado a factory)."""
        settings = self.config.smoothing
        return create_smoother(SmoothingConfig(
            mode=settings.mode,
            confidence_threshold=settings.confidence_threshold,
            alpha=settings.alpha,
            max_center_distance=settings.max_center_distance,
        ))

    def build_scheduler(self) -> TickScheduler:
        return AsyncioTickScheduler(max_fps=self.config.capture.max_fps)

    def build_loop(
        self,
        smoother: BaseDetectionSmoother,
        on_fault: Optional[Callable[[LoopHandle, BaseException], None]] = None,
    ) -> FrameLoopController:
        return FrameLoopController(
            smoother=smoother,
            scheduler=self.build_scheduler(),
            on_fault=on_fault,
        )

    def build_source(self, model_path: Optional[str] = None) -> DetectionSource:
        """
        Construye detection source (NO carga el modelo, eso es load()).

        Lazy import: ultralytics solo se importa cuando realmente se
        construye un modelo.
        """
        from ..inference.yolo import UltralyticsDetectionSource

        settings = self.config.model
        path = model_path or settings.path
        logger.info(
            "Building detection source",
            extra={"component": "builder", "event": "source_build_start", "model_path": path}
        )
        return UltralyticsDetectionSource(
            model_path=path,
            imgsz=settings.imgsz,
            confidence=settings.confidence,
            iou_threshold=settings.iou_threshold,
        )

    def build_camera(self, facing: Optional[str] = None) -> FrameProvider:
        settings = self.config.capture
        device = resolve_camera_device(facing or settings.facing, settings.devices)
        return CameraFrameProvider(
            device=device,
            width=settings.frame_width,
            height=settings.frame_height,
        )

    def build_image(self, image_path: str) -> FrameProvider:
        return StaticImageFrameProvider(image_path)

    def build_renderer(self) -> Tuple[OpenCVAnnotationRenderer, BufferSurface]:
        """
        Returns:
            (renderer, surface) - surface siempre es BufferSurface (para
            snapshots); con show_window la imagen se espeja en una ventana
        """
        settings = self.config.render
        mirror = WindowSurface(settings.window_name) if settings.show_window else None
        renderer = OpenCVAnnotationRenderer(show_statistics=settings.show_statistics)
        return renderer, BufferSurface(mirror=mirror)

    def build_control_plane(self) -> Optional[MQTTControlPlane]:
        settings = self.config.control
        if not settings.enabled:
            logger.info(
                "Control plane disabled",
                extra={"component": "builder", "event": "control_plane_skipped"}
            )
            return None

        return MQTTControlPlane(
            broker_host=settings.broker_host,
            broker_port=settings.broker_port,
            command_topic=settings.command_topic,
            status_topic=settings.status_topic,
            client_id="centinela_control",
            username=settings.username,
            password=settings.password,
        )
