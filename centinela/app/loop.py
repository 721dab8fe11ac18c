"""
Frame Loop Controller
=====================

Loop cooperativo single-threaded: pull frame → detect → smooth → render →
schedule next.

States:
    IDLE ──start()──▶ RUNNING ──stop()──▶ IDLE
                         │
                         └──fault──▶ FAULTED (handle liberado, sin más ticks)

Garantías:
- A lo sumo un LoopHandle activo por controller
- A lo sumo un tick en vuelo por handle (el siguiente se agenda recién
  cuando el render del actual terminó)
- stop() es idempotente y seguro desde paths de error
- stop() cancela el tick agendado pero NO interrumpe uno en vuelo: ese tick
  termina y su resultado se descarta
- SmoothingState se resetea en cada start() y stop()
- Fallo de detección/render = fatal: stop() + error en el handle + on_fault.
  Sin reintentos.

Scheduling:
- TickScheduler inyectable ("correr el próximo tick cuando se pueda")
- AsyncioTickScheduler: producción, una task por tick sobre el event loop
- ManualTickScheduler: cola FIFO explícita para tests deterministas
"""
import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

import numpy as np

from ..capture.base import FrameProvider
from ..detection.types import DetectionSet
from ..errors import AlreadyRunningError, CentinelaError, RenderError, SourceUnavailableError
from ..inference.base import DetectionSource, run_detection
from ..logging import generate_trace_id, log_error_with_context, log_loop_event, trace_context
from ..stabilization.smoothing import BaseDetectionSmoother, discard_malformed
from ..visualization.renderer import AnnotationRenderer
from ..visualization.surfaces import BufferSurface, Surface

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAULTED = "faulted"


# ============================================================================
# Loop Handle
# ============================================================================

class LoopHandle:
    """
    Token de cancelación/identidad de un loop en ejecución.

    Creado por start(), pertenece al caller que lo inició. Se invalida en
    stop(), en el dispose del controller y ante un fault irrecuperable.

    Usage:
        handle = controller.start(source, renderer, frames)
        ...
        await handle.wait()  # retorna al parar; re-lanza el error si hubo fault
    """

    def __init__(self, loop_id: Optional[str] = None):
        self.loop_id = loop_id or generate_trace_id("loop")
        self.active = True
        self.error: Optional[BaseException] = None
        self.ticks = 0

        self._pending: Optional[Any] = None  # tick agendado (cancelable)
        self._done = asyncio.Event()

    def _release(self) -> None:
        self.active = False
        self._pending = None
        self._done.set()

    @property
    def faulted(self) -> bool:
        return self.error is not None

    async def wait(self) -> None:
        await self._done.wait()
        if self.error is not None:
            raise self.error

    def __repr__(self) -> str:
        return f"LoopHandle({self.loop_id}, active={self.active}, ticks={self.ticks})"


@dataclass
class _LoopBinding:
    """Colaboradores de un loop (fijos durante la vida del handle)."""
    handle: LoopHandle
    source: DetectionSource
    renderer: AnnotationRenderer
    frames: FrameProvider
    surface: Surface


# ============================================================================
# Tick Schedulers
# ============================================================================

class TickScheduler(ABC):
    """
    Primitiva "correr en el próximo tick disponible".

    schedule() retorna un objeto con cancel() que descarta el tick si
    todavía no empezó.
    """

    @abstractmethod
    def schedule(self, tick: TickCallback) -> Any:
        pass


class AsyncioTickScheduler(TickScheduler):
    """
    Un asyncio task por tick sobre el event loop en ejecución.

    Args:
        max_fps: Si se especifica, espera 1/max_fps entre ticks. None = el loop
                 se auto-regula por la cadencia de cámara/modelo/render.
    """

    def __init__(self, max_fps: Optional[float] = None):
        self.interval = 1.0 / max_fps if max_fps else 0.0
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, tick: TickCallback) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._run(tick))
        # Referencia fuerte hasta que termine (el event loop solo guarda weakrefs)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, tick: TickCallback) -> None:
        await asyncio.sleep(self.interval)
        await tick()


class ScheduledTick:
    """Entrada de la cola de ManualTickScheduler."""

    def __init__(self, callback: TickCallback):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTickScheduler(TickScheduler):
    """
    Cola FIFO de ticks que se ejecutan solo cuando se pide.

    Usage (tests, replays offline):
        scheduler = ManualTickScheduler()
        controller = FrameLoopController(smoother, scheduler=scheduler)
        controller.start(source, renderer, frames)
        await scheduler.run_next()        # un tick
        await scheduler.run_until_idle()  # hasta que no queden ticks (o limit)
    """

    def __init__(self):
        self._queue: Deque[ScheduledTick] = deque()

    def schedule(self, tick: TickCallback) -> ScheduledTick:
        entry = ScheduledTick(tick)
        self._queue.append(entry)
        return entry

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry.cancelled)

    async def run_next(self) -> bool:
        """Ejecuta el próximo tick no cancelado. False si la cola está vacía."""
        while self._queue:
            entry = self._queue.popleft()
            if entry.cancelled:
                continue
            await entry.callback()
            return True
        return False

    async def run_until_idle(self, limit: int = 100) -> int:
        executed = 0
        while executed < limit and await self.run_next():
            executed += 1
        return executed


# ============================================================================
# Frame Loop Controller
# ============================================================================

class FrameLoopController:
    """
    Controlador del loop de captura continua.

    Responsabilidad: lifecycle del loop (start/stop/fault) y el tick
    - NO carga modelos ni abre cámaras (eso es del caller)
    - Dueño exclusivo del smoother mientras el loop corre

    Args:
        smoother: Estrategia de suavizado (su estado es el SmoothingState del loop)
        scheduler: Primitiva de scheduling (default AsyncioTickScheduler)
        on_fault: Callback(handle, error) cuando un tick falla
    """

    def __init__(
        self,
        smoother: BaseDetectionSmoother,
        scheduler: Optional[TickScheduler] = None,
        on_fault: Optional[Callable[[LoopHandle, BaseException], None]] = None,
    ):
        self.smoother = smoother
        self.scheduler = scheduler or AsyncioTickScheduler()
        self.on_fault = on_fault

        self._state = LoopState.IDLE
        self._binding: Optional[_LoopBinding] = None
        self.last_detections: DetectionSet = []

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def handle(self) -> Optional[LoopHandle]:
        return self._binding.handle if self._binding else None

    @property
    def is_running(self) -> bool:
        return self._binding is not None and self._binding.handle.active

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        source: DetectionSource,
        renderer: AnnotationRenderer,
        frames: FrameProvider,
        surface: Optional[Surface] = None,
    ) -> LoopHandle:
        """
        Inicia el loop y agenda el primer tick.

        Raises:
            AlreadyRunningError: Si ya hay un LoopHandle activo (el loop
                                 existente no se toca)
        """
        if self.is_running:
            raise AlreadyRunningError(
                f"Frame loop already running ({self._binding.handle.loop_id}); "
                f"call stop() before start()"
            )

        handle = LoopHandle()
        self.smoother.reset()
        self.last_detections = []
        self._binding = _LoopBinding(
            handle=handle,
            source=source,
            renderer=renderer,
            frames=frames,
            surface=surface if surface is not None else BufferSurface(),
        )
        self._state = LoopState.RUNNING

        log_loop_event(
            logger,
            event="loop_started",
            loop_id=handle.loop_id,
            state=self._state.value,
            message=f"▶️ Frame loop iniciado ({frames.description})",
            model=source.model_id,
        )

        self._schedule_next(handle)
        return handle

    def stop(self, handle: Optional[LoopHandle] = None) -> None:
        """
        Detiene el loop. Idempotente: sobre un handle ya parado o nunca
        iniciado es un no-op.

        Args:
            handle: Handle a detener (default: el activo)
        """
        target = handle if handle is not None else self.handle
        if target is None or not target.active:
            return

        if target._pending is not None:
            target._pending.cancel()

        ticks = target.ticks
        target._release()

        if self._binding is not None and self._binding.handle is target:
            self._binding = None

        self.smoother.reset()
        self.last_detections = []
        self._state = LoopState.IDLE

        log_loop_event(
            logger,
            event="loop_stopped",
            loop_id=target.loop_id,
            state=self._state.value,
            message=f"⏹️ Frame loop detenido ({ticks} ticks)",
            ticks=ticks,
        )

    def _schedule_next(self, handle: LoopHandle) -> None:
        handle._pending = self.scheduler.schedule(partial(self.tick, handle))

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, handle: LoopHandle) -> None:
        """
        Un ciclo completo del loop para `handle`.

        Sin frame disponible → no-op y se agenda el próximo tick.
        """
        # El tick ya no es cancelable: a partir de acá está "en vuelo"
        handle._pending = None
        if not handle.active or self._binding is None:
            return

        binding = self._binding

        with trace_context(handle.loop_id):
            try:
                await self._run_tick(binding)
            except CentinelaError as e:
                self._fault(handle, e)
                return
            except Exception as e:
                error = SourceUnavailableError(f"Frame loop tick failed: {e}")
                error.__cause__ = e
                self._fault(handle, error)
                return

        if handle.active:
            self._schedule_next(handle)

    async def _run_tick(self, binding: _LoopBinding) -> None:
        handle = binding.handle

        async with binding.frames.frame() as frame:
            if frame is None:
                logger.debug("Frame not ready, skipping tick")
                return

            raw = await run_detection(binding.source, frame)

            if not handle.active:
                logger.debug(
                    "Discarding in-flight tick result (loop stopped)",
                    extra={"component": "frame_loop", "loop_id": handle.loop_id}
                )
                return

            detections = self.smoother.process(discard_malformed(raw))
            self._render(binding, detections, frame)

            handle.ticks += 1
            self.last_detections = detections

    @staticmethod
    def _render(binding: _LoopBinding, detections: DetectionSet, frame: np.ndarray) -> None:
        try:
            binding.renderer.render(detections, frame, binding.surface)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"Render failed: {e}") from e

    def _fault(self, handle: LoopHandle, error: BaseException) -> None:
        if not handle.active:
            logger.warning(
                f"⚠️ Error after stop discarded: {error}",
                extra={"component": "frame_loop", "loop_id": handle.loop_id}
            )
            return

        handle.error = error
        log_error_with_context(
            logger,
            message="❌ Frame loop faulted",
            exception=error,
            component="frame_loop",
            event="loop_faulted",
            loop_id=handle.loop_id,
            ticks=handle.ticks,
        )

        self.stop(handle)
        self._state = LoopState.FAULTED

        if self.on_fault is not None:
            try:
                self.on_fault(handle, error)
            except Exception as callback_error:
                log_error_with_context(
                    logger,
                    message="❌ on_fault callback failed",
                    exception=callback_error,
                    component="frame_loop",
                    event="fault_callback_failed",
                    loop_id=handle.loop_id,
                )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        handle = self.handle
        return {
            'state': self._state.value,
            'loop_id': handle.loop_id if handle else None,
            'ticks': handle.ticks if handle else 0,
            'active_detections': len(self.last_detections),
            'smoothing': self.smoother.get_stats(),
        }
