"""
Frame acquisition (camera stream / static image)
"""
from .base import FrameProvider
from .opencv import CameraFrameProvider, StaticImageFrameProvider, resolve_camera_device

__all__ = [
    "FrameProvider",
    "CameraFrameProvider",
    "StaticImageFrameProvider",
    "resolve_camera_device",
]
