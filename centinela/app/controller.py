"""
Capture Controller
==================

Orquestación del capture pipeline:
- Model lifecycle (load en setup, switch explícito, dispose en cleanup)
- Stream continuo de cámara (FrameLoopController)
- Single-shot sobre una imagen ("take picture")
- Restart protocol: switch de cámara / modo / modelo = stop + start
- Control Plane MQTT opcional (comandos re-despachados al event loop)
"""
import argparse
import asyncio
import logging
import signal
import sys
from functools import partial, wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Set

from dotenv import load_dotenv
from pydantic import ValidationError

from ..capture import FrameProvider, resolve_camera_device
from ..config import DEFAULT_CONFIG_PATH, CentinelaConfig
from ..control import MQTTControlPlane
from ..detection import DetectionSet
from ..errors import AlreadyRunningError, RenderError
from ..inference.base import DetectionSource, run_detection
from ..logging import log_error_with_context, log_smoothing_stats, setup_logging
from ..stabilization import discard_malformed
from ..visualization import AnnotationRenderer, BufferSurface, save_snapshot
from .builder import CaptureBuilder
from .loop import FrameLoopController, LoopHandle, LoopState

logger = logging.getLogger(__name__)

CAPTURE_MODES = ('stream', 'single_shot')


class CaptureResult(NamedTuple):
    """Resultado de un single-shot."""
    detections: DetectionSet
    snapshot_path: Optional[Path]


# ============================================================================
# CAPTURE CONTROLLER
# ============================================================================
class CaptureController:
    """
    Controlador de la aplicación.

    Responsabilidad: Orquestación y lifecycle management
    - Setup de componentes (delega construcción a CaptureBuilder)
    - Lifecycle del stream (start/stop/switch)
    - Signal handling (Ctrl+C)
    - Cleanup de recursos

    El FrameLoopController es dueño del SmoothingState; el controller es
    dueño del DetectionSource, la cámara abierta y el surface.
    """

    def __init__(self, config: CentinelaConfig, builder: Optional[CaptureBuilder] = None):
        self.config = config
        self.builder = builder or CaptureBuilder(config)

        self.mode = config.capture.mode
        self.facing = config.capture.facing
        self.model_path = config.model.path

        # Componentes (creados por builder en setup)
        self.loop: Optional[FrameLoopController] = None
        self.source: Optional[DetectionSource] = None
        self.renderer: Optional[AnnotationRenderer] = None
        self.surface: Optional[BufferSurface] = None
        self.frames: Optional[FrameProvider] = None
        self.control_plane: Optional[MQTTControlPlane] = None

        # Lifecycle
        self.last_error: Optional[BaseException] = None
        self.shutdown_event: Optional[asyncio.Event] = None
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self.loop is not None and self.loop.is_running

    def setup(self) -> bool:
        """
        Construye componentes y carga el modelo.

        Returns:
            bool: True si setup exitoso, False si el Control Plane no conectó

        Raises:
            FileNotFoundError / SourceUnavailableError: Si el modelo no carga
        """
        logger.info("🚀 Inicializando centinela...")

        smoother = self.builder.build_smoother()
        self.loop = self.builder.build_loop(smoother, on_fault=self._on_fault)
        self.renderer, self.surface = self.builder.build_renderer()

        logger.info(f"🧠 Cargando modelo: {self.model_path}")
        self.source = self.builder.build_source(self.model_path)
        self.source.load()

        self.control_plane = self.builder.build_control_plane()
        if self.control_plane is not None:
            logger.info("🎮 Configurando Control Plane...")
            self._setup_control_commands()
            if not self.control_plane.connect(timeout=10):
                logger.error("❌ No se pudo conectar Control Plane")
                return False

        logger.info("✅ Setup completado")
        return True

    def _require_setup(self) -> None:
        if self.loop is None or self.source is None:
            raise RuntimeError("CaptureController.setup() must be called first")

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    def start_stream(self) -> LoopHandle:
        """
        Abre la cámara activa e inicia el frame loop.

        Raises:
            AlreadyRunningError: Si el stream ya está corriendo
            SourceUnavailableError: Si la cámara no abre
        """
        self._require_setup()
        if self.is_running:
            raise AlreadyRunningError(f"Stream already running ({self.loop.handle.loop_id})")

        frames = self.builder.build_camera(self.facing)
        frames.open()
        try:
            handle = self.loop.start(self.source, self.renderer, frames, self.surface)
        except Exception:
            frames.close()
            raise

        self.frames = frames
        self.mode = 'stream'
        self.last_error = None
        self._publish_status("running", facing=self.facing, loop_id=handle.loop_id)
        return handle

    def stop_stream(self) -> None:
        """Detiene el loop y libera la cámara. Idempotente."""
        if self.loop is not None:
            self.loop.stop()

        if self._close_frames():
            self._publish_status("stopped")

    def _close_frames(self) -> bool:
        if self.frames is None:
            return False
        frames, self.frames = self.frames, None
        frames.close()
        return True

    def _on_fault(self, handle: LoopHandle, error: BaseException) -> None:
        """Loop detenido por error: libera cámara, limpia overlay, publica."""
        self.last_error = error
        self._close_frames()

        if self.renderer is not None and self.surface is not None:
            self.renderer.clear(self.surface)

        logger.warning(
            "⚠️ Stream detenido por error (usar 'start' para reiniciar)",
            extra={
                "component": "capture_controller",
                "event": "stream_faulted",
                "loop_id": handle.loop_id,
                "error_type": type(error).__name__,
            }
        )
        self._publish_status("faulted", error=str(error), error_type=type(error).__name__)

        # Sin control plane nadie puede reiniciar el stream
        if self.control_plane is None and self.shutdown_event is not None:
            self.shutdown_event.set()

    # ------------------------------------------------------------------
    # Restart protocol
    # ------------------------------------------------------------------

    def switch_camera(self, facing: Optional[str] = None) -> None:
        """
        Cambia de cámara (stop → facing → start si estaba corriendo).

        Args:
            facing: 'user' | 'environment' (None = alternar)
        """
        if facing is None:
            facing = 'environment' if self.facing == 'user' else 'user'
        resolve_camera_device(facing, self.config.capture.devices)

        was_running = self.is_running
        self.stop_stream()
        self.facing = facing
        logger.info(f"🔄 Cámara activa: {facing}")

        if was_running:
            self.start_stream()

    def switch_mode(self, mode: str) -> None:
        """stream ↔ single_shot (stop, luego start si el nuevo modo es stream)."""
        if mode not in CAPTURE_MODES:
            raise ValueError(f"Unknown capture mode '{mode}'. Available: {', '.join(CAPTURE_MODES)}")

        self.stop_stream()
        self.mode = mode
        logger.info(f"🔄 Modo de captura: {mode}")

        if mode == 'stream':
            self.start_stream()

    def switch_model(self, model_path: str) -> None:
        """
        Reemplaza el modelo (boundary del Model Lifecycle, nunca mid-tick).

        Si el load falla, el controller queda parado y sin modelo cargado.
        """
        self._require_setup()
        was_running = self.is_running
        self.stop_stream()

        self.source.dispose()
        source = self.builder.build_source(model_path)
        source.load()
        self.source = source
        self.model_path = model_path
        logger.info(f"🧠 Modelo activo: {source.model_id}")

        if was_running:
            self.start_stream()

    # ------------------------------------------------------------------
    # Single shot / snapshots
    # ------------------------------------------------------------------

    async def capture_single(self, image_path: Optional[str] = None, save: bool = True) -> CaptureResult:
        """
        Detección sobre una sola imagen.

        Usa un smoother nuevo: la primera observación es el raw filtrado por
        confianza (no hay historia que mezclar).

        Raises:
            AlreadyRunningError: Si el stream está corriendo
            ValueError: Si no hay imagen configurada
            SourceUnavailableError: Si la imagen o el modelo no están disponibles
        """
        self._require_setup()
        if self.is_running:
            raise AlreadyRunningError("Stop the stream before a single-shot capture")

        path = image_path or self.config.capture.image_path
        if not path:
            raise ValueError("No image_path given for single-shot capture")

        frames = self.builder.build_image(path)
        frames.open()
        try:
            async with frames.frame() as frame:
                raw = await run_detection(self.source, frame)
                detections = self.builder.build_smoother().process(discard_malformed(raw))
                try:
                    self.renderer.render(detections, frame, self.surface)
                except Exception as e:
                    raise RenderError(f"Render failed: {e}") from e
        finally:
            frames.close()

        snapshot_path = None
        if save:
            snapshot_path = save_snapshot(self.surface.image, self.config.render.snapshot_dir, prefix="capture")

        logger.info(
            f"📸 Single-shot: {len(detections)} detecciones",
            extra={
                "component": "capture_controller",
                "event": "single_shot_completed",
                "image_path": str(path),
                "detections": [d.label_text for d in detections],
            }
        )
        self._publish_status(
            "captured",
            detections=[d.label_text for d in detections],
            snapshot=str(snapshot_path) if snapshot_path else None,
        )
        return CaptureResult(detections, snapshot_path)

    def snapshot(self) -> Path:
        """Guarda el último frame anotado."""
        if self.surface is None or self.surface.image is None:
            raise ValueError("No annotated frame available for snapshot")
        return save_snapshot(self.surface.image, self.config.render.snapshot_dir)

    def status(self) -> Dict[str, Any]:
        stats = self.loop.get_stats() if self.loop is not None else {}
        return {
            'state': self.loop.state.value if self.loop is not None else LoopState.IDLE.value,
            'mode': self.mode,
            'facing': self.facing,
            'model': self.source.model_id if self.source is not None else self.model_path,
            'ticks': stats.get('ticks', 0),
            'active_detections': stats.get('active_detections', 0),
            'error': str(self.last_error) if self.last_error is not None else None,
        }

    # ------------------------------------------------------------------
    # Control Plane
    # ------------------------------------------------------------------

    def _setup_control_commands(self):
        """Registra comandos en CommandRegistry del Control Plane."""
        registry = self.control_plane.command_registry

        registry.register('start', self._dispatch(self.start_stream), "Inicia captura continua")
        registry.register('stop', self._dispatch(self.stop_stream), "Detiene captura continua")
        registry.register('switch_camera', self._dispatch(self.switch_camera), "Cambia cámara (facing=user|environment)")
        registry.register('switch_mode', self._dispatch(self.switch_mode), "Cambia modo (mode=stream|single_shot)")
        registry.register('switch_model', self._dispatch(self.switch_model), "Cambia modelo (model_path=...)")
        registry.register('capture', self._dispatch(self.capture_single), "Single-shot (image_path=...)")
        registry.register('snapshot', self._dispatch(self._handle_snapshot), "Guarda el último frame anotado")
        registry.register('status', self._dispatch(self._handle_status), "Publica estado actual")
        registry.register('smoothing_stats', self._dispatch(self._handle_smoothing_stats), "Estadísticas de suavizado")
        registry.register('shutdown', self._dispatch(self._handle_shutdown), "Finaliza el servicio")

    def _dispatch(self, handler: Callable[..., Any]) -> Callable[..., None]:
        """
        Envuelve un handler para que corra en el event loop.

        paho invoca los comandos desde su thread de red; el frame loop y sus
        colaboradores solo se tocan desde el event loop.
        """
        @wraps(handler)
        def dispatch(**kwargs: Any) -> None:
            callback = partial(self._run_command, handler, kwargs)
            if self._event_loop is not None and self._event_loop.is_running():
                self._event_loop.call_soon_threadsafe(callback)
            else:
                callback()

        return dispatch

    def _run_command(self, handler: Callable[..., Any], kwargs: Dict[str, Any]) -> None:
        try:
            result = handler(**kwargs)
        except Exception as e:
            self._command_failed(handler, e)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.get_running_loop().create_task(self._await_command(handler, result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _await_command(self, handler: Callable[..., Any], pending: Awaitable[Any]) -> None:
        try:
            await pending
        except Exception as e:
            self._command_failed(handler, e)

    def _command_failed(self, handler: Callable[..., Any], error: Exception) -> None:
        log_error_with_context(
            logger,
            message=f"❌ Comando '{getattr(handler, '__name__', handler)}' falló",
            exception=error,
            component="capture_controller",
            event="command_failed",
        )
        self._publish_status("error", error=str(error), error_type=type(error).__name__)

    def _handle_snapshot(self):
        path = self.snapshot()
        self._publish_status("snapshot_saved", path=str(path))

    def _handle_status(self):
        logger.info("📋 Comando STATUS recibido")
        details = self.status()
        self._publish_status(details.pop('state'), **details)

    def _handle_smoothing_stats(self):
        logger.info("📊 Comando SMOOTHING_STATS recibido")
        if self.loop is None:
            logger.warning("⚠️ Smoother no disponible (setup pendiente)")
            return
        handle = self.loop.handle
        log_smoothing_stats(logger, self.loop.smoother.get_stats(), loop_id=handle.loop_id if handle else None)

    def _handle_shutdown(self):
        logger.info("🛑 Comando SHUTDOWN recibido")
        self.stop_stream()
        if self.shutdown_event is not None:
            self.shutdown_event.set()

    def _publish_status(self, status: str, **details: Any) -> None:
        if self.control_plane is not None:
            details.setdefault('mode', self.mode)
            self.control_plane.publish_status(status, **details)

    # ------------------------------------------------------------------
    # Run / cleanup
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Ejecuta la aplicación hasta SIGINT/SIGTERM, 'shutdown' o (sin
        control plane) fin del single-shot / fault del stream.
        """
        self._event_loop = asyncio.get_running_loop()
        self.shutdown_event = asyncio.Event()

        try:
            if not self.setup():
                logger.error("❌ Setup falló")
                return

            self._install_signal_handlers()
            self._log_banner()

            if self.mode == 'stream':
                self.start_stream()
            elif self.config.capture.image_path:
                await self.capture_single()
                if self.control_plane is None:
                    self.shutdown_event.set()
            elif self.control_plane is None:
                logger.warning("⚠️ Modo single_shot sin image_path ni control plane, nada que hacer")
                self.shutdown_event.set()

            await self.shutdown_event.wait()
        finally:
            self.cleanup()

    def _install_signal_handlers(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._event_loop.add_signal_handler(sig, self._signal_handler, sig)
            except NotImplementedError:
                # Windows: sin add_signal_handler en el event loop
                signal.signal(
                    sig,
                    lambda signum, frame: self._event_loop.call_soon_threadsafe(self._signal_handler, signum)
                )

    def _signal_handler(self, signum):
        """Handler para señales (Ctrl+C)"""
        logger.info(f"⚠️ Señal de terminación recibida ({signal.Signals(signum).name})")
        self.stop_stream()
        if self.shutdown_event is not None:
            self.shutdown_event.set()

    def _log_banner(self) -> None:
        logger.info("=" * 70)
        logger.info("🎬 Centinela activo")
        logger.info("=" * 70)
        logger.info(f"🧠 Modelo: {self.source.model_id}")
        logger.info(f"📷 Modo: {self.mode} | Cámara: {self.facing}")
        if self.control_plane is not None:
            logger.info(f"📡 Control Topic: {self.control_plane.command_topic}")
            logger.info("💡 Comandos MQTT disponibles:")
            for command, description in sorted(self.control_plane.command_registry.get_help().items()):
                logger.info(f"   {command}: {description}")
        logger.info("⌨️  Presiona Ctrl+C para salir")
        logger.info("=" * 70)

    def cleanup(self):
        """Libera cámara, modelo, ventana y control plane."""
        logger.info("🧹 Limpiando recursos...")

        try:
            self.stop_stream()
        except Exception as e:
            logger.error(f"❌ Error deteniendo stream: {e}")

        if self.source is not None:
            try:
                self.source.dispose()
                logger.info("✅ Modelo liberado")
            except Exception as e:
                logger.error(f"❌ Error liberando modelo: {e}")

        if self.renderer is not None and self.surface is not None:
            try:
                self.renderer.clear(self.surface)
            except Exception as e:
                logger.error(f"❌ Error cerrando surface: {e}")

        if self.control_plane is not None:
            try:
                self.control_plane.disconnect()
                logger.info("✅ Control Plane desconectado")
            except Exception as e:
                logger.error(f"❌ Error desconectando Control Plane: {e}")

        logger.info("👋 Hasta luego!")


# ============================================================================
# MAIN
# ============================================================================
def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="centinela",
        description="Detección de objetos estabilizada en tiempo real"
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Config YAML (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "--image",
        help="Single-shot: detecta sobre esta imagen, guarda el snapshot y sale"
    )
    parser.add_argument(
        "--log-level",
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help="Override de logging.level"
    )
    return parser


def main(argv=None):
    """Punto de entrada principal"""
    load_dotenv()
    args = build_arg_parser().parse_args(argv)

    try:
        config = CentinelaConfig.load(args.config)
    except ValidationError as e:
        print("❌ Invalid configuration:")
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            print(f"   • {field}: {error['msg']}")
        print(f"\nPlease fix {args.config} and try again.")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        sys.exit(1)

    if args.image:
        config = config.model_copy(update={
            'capture': config.capture.model_copy(update={'mode': 'single_shot', 'image_path': args.image}),
            'render': config.render.model_copy(update={'show_window': False}),
            'control': config.control.model_copy(update={'enabled': False}),
        })

    log_settings = config.logging
    setup_logging(
        level=args.log_level or log_settings.level,
        indent=log_settings.json_indent,
        log_file=log_settings.file,
        max_bytes=log_settings.max_bytes,
        backup_count=log_settings.backup_count,
    )
    # Reducir verbosidad de paho-mqtt
    logging.getLogger('paho').setLevel(getattr(logging, log_settings.paho_level))
    logger.info("🔧 Centinela starting...")

    controller = CaptureController(config)

    try:
        asyncio.run(controller.run())
    except Exception as e:
        logger.error(f"❌ Error fatal: {e}", exc_info=True)
        sys.exit(1)

    if controller.last_error is not None:
        sys.exit(1)


if __name__ == "__main__":
    main()
