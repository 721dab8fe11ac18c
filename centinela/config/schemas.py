"""
Pydantic Configuration Schemas
================================

Type-safe configuration validation usando Pydantic v2.

Benefits:
- Validación en load time (no en runtime)
- Type safety con IDE autocomplete
- Mejores mensajes de error

Usage:
    config = CentinelaConfig.from_yaml("config/centinela/config.yaml")
    # Config ya está validado, tipos garantizados
"""
from pathlib import Path
from typing import Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "config/centinela/config.yaml"


# ============================================================================
# Capture Configuration
# ============================================================================

class CaptureSettings(BaseModel):
    """Frame acquisition settings"""
    mode: Literal['stream', 'single_shot'] = Field(
        default='stream',
        description="Continuous camera stream or single image"
    )
    facing: Literal['user', 'environment'] = Field(
        default='user',
        description="Active camera (front/back)"
    )
    devices: Dict[str, int] = Field(
        default_factory=lambda: {'user': 0, 'environment': 1},
        description="Camera facing → OpenCV device index"
    )
    frame_width: Optional[int] = Field(
        default=None,
        ge=1,
        description="Requested capture width (None = device default)"
    )
    frame_height: Optional[int] = Field(
        default=None,
        ge=1,
        description="Requested capture height (None = device default)"
    )
    image_path: Optional[str] = Field(
        default=None,
        description="Image for single_shot mode"
    )
    max_fps: Optional[float] = Field(
        default=None,
        gt=0,
        le=120,
        description="Pace the loop (None = follow camera/model cadence)"
    )

    @model_validator(mode='after')
    def validate_facing_has_device(self):
        """Active facing must be mapped to a device"""
        if self.facing not in self.devices:
            raise ValueError(
                f"facing '{self.facing}' has no device in devices "
                f"({', '.join(sorted(self.devices))})"
            )
        return self


# ============================================================================
# Model Configuration
# ============================================================================

class ModelSettings(BaseModel):
    """Model configuration (Ultralytics YOLO, .pt or .onnx)"""
    path: str = Field(
        default="yolo11n.pt",
        description="Model path or official Ultralytics model name"
    )
    imgsz: int = Field(
        default=640,
        ge=64,
        le=1280,
        description="Model input size (must be multiple of 32)"
    )
    confidence: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Model-side confidence (pre-filter, before smoothing)"
    )
    iou_threshold: float = Field(
        default=0.45,
        ge=0.0,
        le=1.0,
        description="IoU threshold for NMS"
    )

    @field_validator('imgsz')
    @classmethod
    def validate_imgsz_multiple_of_32(cls, v: int) -> int:
        """Validate that imgsz is multiple of 32 (YOLO requirement)"""
        if v % 32 != 0:
            raise ValueError(f"imgsz must be multiple of 32, got {v}")
        return v


# ============================================================================
# Smoothing Configuration
# ============================================================================

class SmoothingSettings(BaseModel):
    """Temporal smoothing configuration"""
    mode: Literal['none', 'exponential'] = Field(
        default='exponential',
        description="Smoothing mode"
    )
    confidence_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Detections below this never reach the overlay"
    )
    alpha: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Weight of the new observation (0.1 = heavy inertia)"
    )
    max_center_distance: float = Field(
        default=50.0,
        gt=0.0,
        description="Max center distance (px) to consider same object"
    )


# ============================================================================
# Render Configuration
# ============================================================================

class RenderSettings(BaseModel):
    """Annotation rendering settings"""
    show_window: bool = Field(
        default=True,
        description="Show OpenCV window"
    )
    window_name: str = Field(
        default="Centinela",
        description="OpenCV window title"
    )
    show_statistics: bool = Field(
        default=True,
        description="Draw detection count overlay"
    )
    snapshot_dir: str = Field(
        default="snapshots",
        description="Directory for saved annotated images"
    )


# ============================================================================
# Control Plane Configuration
# ============================================================================

class ControlSettings(BaseModel):
    """MQTT control plane (optional)"""
    enabled: bool = Field(
        default=False,
        description="Enable MQTT remote control"
    )
    broker_host: str = Field(
        default="localhost",
        description="MQTT broker hostname"
    )
    broker_port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    command_topic: str = Field(
        default="centinela/control/commands",
        description="Control commands topic (QoS 1)"
    )
    status_topic: str = Field(
        default="centinela/control/status",
        description="Control status topic (retained)"
    )
    username: Optional[str] = Field(
        default=None,
        description="MQTT username (optional, from env)"
    )
    password: Optional[str] = Field(
        default=None,
        description="MQTT password (optional, from env)"
    )


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingSettings(BaseModel):
    """Logging configuration (JSON structured logging)"""
    level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='INFO',
        description="Log level"
    )
    json_indent: Optional[int] = Field(
        default=None,
        ge=0,
        le=4,
        description="JSON indent for pretty-print (None=compact, 2=readable)"
    )
    paho_level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='WARNING',
        description="Paho MQTT library log level"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (None=stdout). If specified, enables file rotation."
    )
    max_bytes: int = Field(
        default=10485760,  # 10 MB
        ge=1024,
        description="Maximum bytes per log file before rotation (default 10 MB)"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep"
    )


# ============================================================================
# Environment (secrets)
# ============================================================================

class EnvironmentSettings(BaseSettings):
    """Secrets from environment / .env (override YAML)"""
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None


# ============================================================================
# Root Configuration
# ============================================================================

class CentinelaConfig(BaseModel):
    """
    Root configuration with full validation.

    Loads from YAML and validates all settings.
    Environment variables override YAML for sensitive data.
    """
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    smoothing: SmoothingSettings = Field(default_factory=SmoothingSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)
    control: ControlSettings = Field(default_factory=ControlSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> 'CentinelaConfig':
        """
        Load and validate configuration from YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValidationError: If config is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create it from {DEFAULT_CONFIG_PATH}"
            )

        with open(config_file, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        return cls.model_validate(config_dict).with_environment()

    @classmethod
    def load(cls, config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> 'CentinelaConfig':
        """YAML si existe, defaults si no."""
        if Path(config_path).exists():
            return cls.from_yaml(config_path)
        return cls().with_environment()

    def with_environment(self, env: Optional[EnvironmentSettings] = None) -> 'CentinelaConfig':
        """Override sensitive data from environment variables."""
        env = env or EnvironmentSettings()

        updates = {}
        if env.mqtt_username:
            updates['username'] = env.mqtt_username
        if env.mqtt_password:
            updates['password'] = env.mqtt_password

        if not updates:
            return self

        return self.model_copy(
            update={'control': self.control.model_copy(update=updates)}
        )
