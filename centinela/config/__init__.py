"""
Configuration Module
====================

Provides configuration loading with Pydantic validation.

Usage:
    from centinela.config import CentinelaConfig
    config = CentinelaConfig.load("config/centinela/config.yaml")
"""
from .schemas import (
    DEFAULT_CONFIG_PATH,
    CentinelaConfig,
    CaptureSettings,
    ModelSettings,
    SmoothingSettings,
    RenderSettings,
    ControlSettings,
    LoggingSettings,
    EnvironmentSettings,
)

__all__ = [
    'DEFAULT_CONFIG_PATH',
    'CentinelaConfig',
    'CaptureSettings',
    'ModelSettings',
    'SmoothingSettings',
    'RenderSettings',
    'ControlSettings',
    'LoggingSettings',
    'EnvironmentSettings',
]
