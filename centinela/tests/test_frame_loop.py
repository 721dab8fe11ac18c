"""
Frame Loop Controller Tests
===========================

Tests de lifecycle, fault handling y cancelación del frame loop.

Invariantes testeadas:
1. start(): RUNNING + handle activo + un tick agendado
2. start() con loop activo: AlreadyRunningError sin tocar el loop existente
3. stop(): idempotente, cancela el tick agendado, resetea suavizado
4. Fault (detección/render): stop + FAULTED + error en el handle, sin más ticks
5. Frame no disponible: tick no-op, se agenda el siguiente
6. Tick en vuelo al parar: termina pero su resultado se descarta
7. Frame liberado en todo path de salida (éxito y error)

Diseño:
- ManualTickScheduler: ticks ejecutados explícitamente (deterministas)
- asyncio.run() dentro de tests sync
"""
import asyncio
import threading

import pytest

from centinela.app.loop import (
    AsyncioTickScheduler,
    FrameLoopController,
    LoopHandle,
    LoopState,
    ManualTickScheduler,
)
from centinela.capture import CameraFrameProvider, opencv
from centinela.errors import AlreadyRunningError, RenderError, SourceUnavailableError
from centinela.stabilization import ExponentialSmoother
from centinela.visualization import BufferSurface

from .fakes import FakeFrames, FakeSource, RecordingRenderer, blank_frame, det


def make_controller(**kwargs):
    scheduler = ManualTickScheduler()
    controller = FrameLoopController(ExponentialSmoother(), scheduler=scheduler, **kwargs)
    return controller, scheduler


def run(coro):
    return asyncio.run(coro)


@pytest.mark.unit
class TestLoopLifecycle:
    """start/stop del FrameLoopController"""

    def test_initial_state_idle(self):
        controller, scheduler = make_controller()

        assert controller.state == LoopState.IDLE
        assert controller.handle is None
        assert not controller.is_running
        assert scheduler.pending == 0

    def test_start_returns_active_handle_and_schedules_tick(self):
        controller, scheduler = make_controller()

        handle = controller.start(FakeSource(), RecordingRenderer(), FakeFrames())

        assert isinstance(handle, LoopHandle)
        assert handle.active
        assert controller.state == LoopState.RUNNING
        assert controller.handle is handle
        assert scheduler.pending == 1

    def test_stop_twice_is_noop(self):
        """
        Invariante: stop() dos veces seguidas no falla y deja IDLE.
        """
        controller, scheduler = make_controller()
        handle = controller.start(FakeSource(), RecordingRenderer(), FakeFrames())

        controller.stop()
        assert controller.state == LoopState.IDLE

        controller.stop()
        controller.stop(handle)
        assert controller.state == LoopState.IDLE
        assert not handle.active

    def test_stop_without_start_is_noop(self):
        controller, _ = make_controller()

        controller.stop()

        assert controller.state == LoopState.IDLE

    def test_stop_cancels_pending_tick(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        controller.start(FakeSource(), renderer, FakeFrames())

        controller.stop()

        assert scheduler.pending == 0
        assert run(scheduler.run_next()) is False
        assert renderer.rendered == []

    def test_start_while_running_raises_and_keeps_loop(self):
        """
        Invariante: start() con loop activo falla sin perturbar el existente.
        """
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        handle = controller.start(FakeSource([[det('person', 0, 0)]]), renderer, FakeFrames())

        with pytest.raises(AlreadyRunningError):
            controller.start(FakeSource(), RecordingRenderer(), FakeFrames())

        assert handle.active
        assert controller.handle is handle
        assert controller.state == LoopState.RUNNING
        assert scheduler.pending == 1

        run(scheduler.run_next())
        assert renderer.rendered == [[det('person', 0, 0)]]

    def test_wait_returns_after_stop(self):
        controller, _ = make_controller()

        async def scenario():
            handle = controller.start(FakeSource(), RecordingRenderer(), FakeFrames())
            controller.stop(handle)
            await handle.wait()
            return handle

        handle = run(scenario())
        assert not handle.active
        assert handle.error is None


@pytest.mark.unit
class TestLoopTick:
    """Un ciclo: frame → detect → smooth → render → schedule"""

    def test_tick_renders_filtered_detections(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        batch = [det('person', 10, 10, conf=0.9), det('cat', 300, 300, conf=0.2)]
        controller.start(FakeSource([batch]), renderer, FakeFrames())

        run(scheduler.run_next())

        assert renderer.rendered == [[batch[0]]]
        assert controller.last_detections == [batch[0]]
        assert controller.handle.ticks == 1

    def test_next_tick_scheduled_after_render(self):
        controller, scheduler = make_controller()
        controller.start(FakeSource(), RecordingRenderer(), FakeFrames())

        run(scheduler.run_next())

        assert scheduler.pending == 1

    def test_ticks_are_smoothed_across_frames(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        source = FakeSource([
            [det('person', 10, 10, 100, 200, 0.90)],
            [det('person', 12, 11, 101, 199, 0.85)],
        ])
        controller.start(source, renderer, FakeFrames())

        run(scheduler.run_until_idle(limit=2))

        smoothed = renderer.rendered[1][0]
        assert smoothed.box.x == pytest.approx(10.2)
        assert smoothed.confidence == pytest.approx(0.895)

    def test_frame_not_ready_is_noop(self):
        """
        Invariante: sin frame disponible → sin detección ni render, y se
        agenda el siguiente tick.
        """
        controller, scheduler = make_controller()
        source = FakeSource()
        renderer = RecordingRenderer()
        controller.start(source, renderer, FakeFrames([None]))

        run(scheduler.run_next())

        assert source.calls == 0
        assert renderer.rendered == []
        assert controller.handle.ticks == 0
        assert scheduler.pending == 1

        run(scheduler.run_next())
        assert source.calls == 1

    def test_malformed_detections_dropped(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        good = det('person', 0, 0, 10, 10)
        bad = det('person', 50, 50, 0, 10)
        controller.start(FakeSource([[good, bad]]), renderer, FakeFrames())

        run(scheduler.run_next())

        assert renderer.rendered == [[good]]
        assert controller.is_running

    def test_frame_released_every_tick(self):
        controller, scheduler = make_controller()
        frames = FakeFrames([None])
        controller.start(FakeSource(), RecordingRenderer(), frames)

        run(scheduler.run_until_idle(limit=3))

        assert frames.reads == 3
        assert frames.released == 3

    def test_default_surface_is_buffer(self):
        controller, scheduler = make_controller()
        frames = FakeFrames()
        controller.start(FakeSource(), RecordingRenderer(), frames)

        run(scheduler.run_next())

        surface = controller._binding.surface
        assert isinstance(surface, BufferSurface)
        assert surface.image is not None

    def test_restart_resets_smoothing_state(self):
        """
        Invariante: start() nuevo → primera observación sin suavizar.
        """
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()

        controller.start(FakeSource([[det('person', 10, 10, 100, 200, 0.9)]]), renderer, FakeFrames())
        run(scheduler.run_next())
        controller.stop()

        candidate = det('person', 12, 11, 101, 199, 0.85)
        controller.start(FakeSource([[candidate]]), renderer, FakeFrames())
        run(scheduler.run_next())

        assert renderer.rendered[-1] == [candidate]

    def test_stale_handle_tick_is_noop(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        old = controller.start(FakeSource(), renderer, FakeFrames())
        controller.stop(old)
        current = controller.start(FakeSource(), renderer, FakeFrames())

        run(controller.tick(old))

        assert renderer.rendered == []
        assert current.active
        assert scheduler.pending == 1


@pytest.mark.unit
class TestLoopFaults:
    """Fail-fast-and-stop"""

    def test_source_unavailable_faults_loop(self):
        """
        Invariante: SourceUnavailableError a mitad de tick → FAULTED, handle
        inactivo, sin ticks agendados.
        """
        faults = []
        controller, scheduler = make_controller(on_fault=lambda h, e: faults.append((h, e)))
        error = SourceUnavailableError("model not loaded")
        handle = controller.start(FakeSource(error=error), RecordingRenderer(), FakeFrames())

        run(scheduler.run_next())

        assert controller.state == LoopState.FAULTED
        assert not handle.active
        assert handle.faulted
        assert handle.error is error
        assert scheduler.pending == 0
        assert faults == [(handle, error)]
        assert not controller.is_running

    def test_failing_fault_callback_does_not_escape_tick(self):
        """
        Invariante: un on_fault que falla se loguea; el tick retorna y el
        loop queda FAULTED igual.
        """
        def broken_callback(handle, error):
            raise RuntimeError("overlay gone")

        controller, scheduler = make_controller(on_fault=broken_callback)
        error = SourceUnavailableError("camera lost")
        handle = controller.start(FakeSource(error=error), RecordingRenderer(), FakeFrames())

        assert run(scheduler.run_next()) is True

        assert controller.state == LoopState.FAULTED
        assert handle.error is error
        assert scheduler.pending == 0

    def test_unexpected_detect_error_is_normalized(self):
        controller, scheduler = make_controller()
        handle = controller.start(FakeSource(error=RuntimeError("boom")), RecordingRenderer(), FakeFrames())

        run(scheduler.run_next())

        assert isinstance(handle.error, SourceUnavailableError)
        assert isinstance(handle.error.__cause__, RuntimeError)

    def test_frame_provider_error_faults_loop(self):
        controller, scheduler = make_controller()
        handle = controller.start(
            FakeSource(), RecordingRenderer(), FakeFrames(error=SourceUnavailableError("camera gone"))
        )

        run(scheduler.run_next())

        assert controller.state == LoopState.FAULTED
        assert isinstance(handle.error, SourceUnavailableError)

    def test_render_error_faults_loop(self):
        controller, scheduler = make_controller()
        handle = controller.start(FakeSource(), RecordingRenderer(error=ValueError("bad canvas")), FakeFrames())

        run(scheduler.run_next())

        assert controller.state == LoopState.FAULTED
        assert isinstance(handle.error, RenderError)
        assert scheduler.pending == 0

    def test_frame_released_on_failure(self):
        controller, scheduler = make_controller()
        frames = FakeFrames()
        controller.start(FakeSource(error=SourceUnavailableError("x")), RecordingRenderer(), frames)

        run(scheduler.run_next())

        assert frames.released == 1

    def test_wait_reraises_fault(self):
        controller, scheduler = make_controller()

        async def scenario():
            handle = controller.start(
                FakeSource(error=SourceUnavailableError("model not loaded")),
                RecordingRenderer(),
                FakeFrames(),
            )
            await scheduler.run_next()
            await handle.wait()

        with pytest.raises(SourceUnavailableError, match="model not loaded"):
            run(scenario())

    def test_stop_after_fault_is_noop(self):
        controller, scheduler = make_controller()
        controller.start(FakeSource(error=SourceUnavailableError("x")), RecordingRenderer(), FakeFrames())
        run(scheduler.run_next())

        controller.stop()

        assert controller.state == LoopState.FAULTED

    def test_restart_after_fault(self):
        controller, scheduler = make_controller()
        controller.start(FakeSource(error=SourceUnavailableError("x")), RecordingRenderer(), FakeFrames())
        run(scheduler.run_next())

        handle = controller.start(FakeSource(), RecordingRenderer(), FakeFrames())

        assert handle.active
        assert controller.state == LoopState.RUNNING


@pytest.mark.unit
class TestInFlightCancellation:
    """stop() no interrumpe un tick en vuelo: su resultado se descarta"""

    def test_in_flight_result_discarded(self):
        controller, scheduler = make_controller()
        renderer = RecordingRenderer()
        source = FakeSource([[det('person', 0, 0)]], on_detect=lambda: controller.stop())
        controller.start(source, renderer, FakeFrames())

        run(scheduler.run_next())

        assert source.calls == 1
        assert renderer.rendered == []
        assert controller.state == LoopState.IDLE
        assert scheduler.pending == 0
        assert controller.last_detections == []

    def test_in_flight_error_after_stop_does_not_fault(self):
        controller, scheduler = make_controller()
        source = FakeSource(error=SourceUnavailableError("late"), on_detect=lambda: controller.stop())
        handle = controller.start(source, RecordingRenderer(), FakeFrames())

        run(scheduler.run_next())

        assert controller.state == LoopState.IDLE
        assert handle.error is None


@pytest.mark.integration
class TestAsyncioScheduler:
    """Loop real sobre el event loop"""

    def test_runs_ticks_until_stopped(self):
        renderer = RecordingRenderer()

        async def scenario():
            controller = FrameLoopController(ExponentialSmoother(), scheduler=AsyncioTickScheduler())
            handle = controller.start(FakeSource(), renderer, FakeFrames())

            async def until_three_ticks():
                while handle.ticks < 3:
                    await asyncio.sleep(0)

            await asyncio.wait_for(until_three_ticks(), timeout=5.0)
            controller.stop(handle)
            await handle.wait()
            return controller, handle

        controller, handle = run(scenario())

        assert handle.ticks >= 3
        assert not handle.active
        assert controller.state == LoopState.IDLE

    def test_max_fps_sets_interval(self):
        assert AsyncioTickScheduler(max_fps=10).interval == pytest.approx(0.1)
        assert AsyncioTickScheduler().interval == 0.0


class BlockingCapture:
    """cv2.VideoCapture fake: read() bloquea hasta que el test lo libera."""

    def __init__(self, device):
        self.device = device
        self.read_started = threading.Event()
        self.unblock = threading.Event()
        self.release_done = threading.Event()
        self.reading = False
        self.released_while_reading = False

    def isOpened(self):
        return True

    def set(self, prop, value):
        return True

    def read(self):
        self.reading = True
        self.read_started.set()
        self.unblock.wait(timeout=5.0)
        self.reading = False
        return True, blank_frame()

    def release(self):
        self.released_while_reading = self.reading
        self.release_done.set()


@pytest.mark.integration
class TestCameraReleaseWithTickInFlight:
    """stop() + close() con una lectura de cámara en vuelo"""

    def test_camera_released_after_in_flight_read(self, monkeypatch):
        """
        Invariante: el device no se libera mientras un tick lo está leyendo;
        el tick termina, su resultado se descarta y recién entonces se libera.
        """
        captures = []

        def video_capture(device):
            capture = BlockingCapture(device)
            captures.append(capture)
            return capture

        monkeypatch.setattr(opencv.cv2, "VideoCapture", video_capture)
        renderer = RecordingRenderer()

        async def scenario():
            frames = CameraFrameProvider(device=0)
            frames.open()
            capture = captures[0]

            controller, scheduler = make_controller()
            handle = controller.start(FakeSource([[det('person', 0, 0)]]), renderer, frames)
            tick = asyncio.ensure_future(scheduler.run_next())

            assert await asyncio.to_thread(capture.read_started.wait, 5.0)
            controller.stop(handle)
            frames.close()
            assert not capture.release_done.is_set()

            capture.unblock.set()
            await tick
            assert await asyncio.to_thread(capture.release_done.wait, 5.0)
            return capture, handle

        capture, handle = run(scenario())

        assert not capture.released_while_reading
        assert renderer.rendered == []
        assert handle.ticks == 0

    def test_close_without_read_releases(self, monkeypatch):
        capture = BlockingCapture(0)
        monkeypatch.setattr(opencv.cv2, "VideoCapture", lambda device: capture)

        frames = CameraFrameProvider(device=0)
        frames.open()
        frames.close()
        frames.close()

        assert capture.release_done.wait(timeout=5.0)

        with pytest.raises(SourceUnavailableError, match="not open"):
            run(frames.read())
