"""
Application layer - frame loop, builder, controller
"""
from .loop import (
    AsyncioTickScheduler,
    FrameLoopController,
    LoopHandle,
    LoopState,
    ManualTickScheduler,
    TickScheduler,
)
from .builder import CaptureBuilder
from .controller import CaptureController, CaptureResult, main

__all__ = [
    'FrameLoopController',
    'LoopHandle',
    'LoopState',
    'TickScheduler',
    'AsyncioTickScheduler',
    'ManualTickScheduler',
    'CaptureBuilder',
    'CaptureController',
    'CaptureResult',
    'main',
]
