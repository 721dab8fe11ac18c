"""
Structured Logging Infrastructure
==================================

Logging JSON-based para queryability.

Design Philosophy:
- Solo JSON (pragmatismo > complejidad)
- Trace correlation vía contextvars (un trace_id por LoopHandle)
- Helpers para casos comunes (loop lifecycle, smoothing, MQTT, errores)
- Mantiene emojis en mensaje (human-readable dentro de JSON)
- File rotation automático (RotatingFileHandler)

Usage:
    from centinela.logging import setup_logging

    # Stdout (desarrollo)
    setup_logging(level="DEBUG", indent=2)

    # File con rotation (producción)
    setup_logging(level="INFO", log_file="logs/centinela.log")

    # Con trace propagation
    with trace_context(generate_trace_id("loop")):
        logger.info("▶️ Loop started", extra={"trace_id": get_trace_id()})
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

# ============================================================================
# Trace Context (propagación de trace_id)
# ============================================================================

# ContextVar: cada asyncio task hereda una copia del contexto al crearse
trace_id_var: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)


def get_trace_id() -> Optional[str]:
    """Trace ID actual del contexto (None si no hay contexto activo)."""
    return trace_id_var.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Genera un nuevo trace ID único.

    Returns:
        Trace ID en formato: {prefix}-{short_uuid}
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Context manager para propagar trace_id en toda la call stack.

    Args:
        trace_id: ID de trace a propagar. Si None, genera uno automático.
    """
    if trace_id is None:
        trace_id = generate_trace_id()

    token = trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        trace_id_var.reset(token)


# ============================================================================
# Logger Setup
# ============================================================================

class CentinelaJsonFormatter(jsonlogger.JsonFormatter):
    """JsonFormatter con nombres de campo consistentes + trace_id + campos globales."""

    def __init__(self, *args, global_fields: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.global_fields = global_fields or {}

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        # Renombrar campos para consistencia
        if 'levelname' in log_record:
            log_record['level'] = log_record.pop('levelname')

        if 'name' in log_record:
            log_record['logger'] = log_record.pop('name')

        current_trace_id = get_trace_id()
        if current_trace_id and 'trace_id' not in log_record:
            log_record['trace_id'] = current_trace_id

        for key, value in self.global_fields.items():
            if key not in log_record:
                log_record[key] = value


def setup_logging(
    level: str = "INFO",
    indent: Optional[int] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> logging.Handler:
    """
    Configura structured logging (JSON) para toda la aplicación.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        indent: JSON indent para pretty-print (None = compact, 2 = readable)
        add_fields: Campos adicionales globales (ej: {"environment": "production"})
        log_file: Path al archivo de logs (None = stdout). Si se especifica, usa rotation.
        max_bytes: Tamaño máximo por archivo antes de rotar (default 10 MB)
        backup_count: Número de archivos backup a mantener (default 5)

    Returns:
        Handler instalado en el root logger
    """
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler: logging.Handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        print(
            f"📄 Logging to file: {log_file} (max: {max_bytes // 1024 // 1024}MB, backups: {backup_count})",
            file=sys.stderr
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter = CentinelaJsonFormatter(
        '%(timestamp)s %(level)s %(logger)s %(message)s',
        timestamp=True,
        json_indent=indent,
        global_fields=add_fields,
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    return handler


# ============================================================================
# Helper Functions (DRY para casos comunes)
# ============================================================================

def log_loop_event(
    logger: logging.Logger,
    event: str,
    loop_id: str,
    state: str,
    message: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Helper para eventos de lifecycle del frame loop (start/stop/fault).

    Args:
        logger: Logger instance
        event: Evento (loop_started, loop_stopped, loop_faulted, ...)
        loop_id: ID del LoopHandle
        state: Estado del controller luego del evento
        message: Mensaje human-readable (default: el nombre del evento)
        **kwargs: Contexto adicional
    """
    extra = {
        "component": "frame_loop",
        "event": event,
        "loop_id": loop_id,
        "state": state,
        "trace_id": get_trace_id(),
    }
    extra.update(kwargs)

    logger.info(message or event, extra=extra)


def log_smoothing_stats(
    logger: logging.Logger,
    stats: Dict[str, Any],
    loop_id: Optional[str] = None,
    component: str = "temporal_smoother",
) -> None:
    """
    Helper para logs de estadísticas de suavizado.

    Args:
        logger: Logger instance
        stats: Dict retornado por smoother.get_stats()
        loop_id: ID del LoopHandle (opcional)
        component: Componente que genera el log
    """
    extra = {
        "component": component,
        "loop_id": loop_id,
        "smoothing": dict(stats),
    }

    logger.info(
        f"📈 Smoothing stats: {stats.get('ticks', 0)} ticks, "
        f"active={stats.get('active_detections', 0)}",
        extra=extra
    )


def log_mqtt_command(
    logger: logging.Logger,
    command: str,
    topic: str,
    payload: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None
) -> None:
    """
    Helper para logs de comandos MQTT (Control Plane).

    Args:
        logger: Logger instance
        command: Nombre del comando (start, stop, switch_camera, etc.)
        topic: MQTT topic
        payload: Payload completo del comando (opcional)
        trace_id: Trace ID (usa contexto si no se especifica)
    """
    extra = {
        "component": "control_plane",
        "command": command,
        "mqtt_topic": topic,
        "trace_id": trace_id or get_trace_id()
    }

    if payload:
        extra["payload"] = payload

    logger.info(f"📥 Comando recibido: {command}", extra=extra)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    component: str = "unknown",
    event: Optional[str] = None,
    trace_id: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Helper para logs de errores con contexto completo.

    Args:
        logger: Logger instance
        message: Mensaje de error
        exception: Excepción capturada (opcional)
        component: Componente donde ocurrió el error
        event: Evento que causó el error
        trace_id: Trace ID (usa contexto si no se especifica)
        **kwargs: Contexto adicional (loop_id, device, topic, etc.)
    """
    extra = {
        "component": component,
        "trace_id": trace_id or get_trace_id()
    }

    if event:
        extra["event"] = event

    if exception:
        extra["error_type"] = type(exception).__name__
        extra["error_message"] = str(exception)

    extra.update(kwargs)

    if exception:
        logger.error(
            f"{message}: {exception}",
            extra=extra,
            exc_info=(type(exception), exception, exception.__traceback__)
        )
    else:
        logger.error(message, extra=extra)


def get_component_logger(component: str) -> logging.Logger:
    """Logger con namespace específico (centinela.<component>)."""
    return logging.getLogger(f"centinela.{component}")


__all__ = [
    # Setup
    "setup_logging",
    "CentinelaJsonFormatter",
    # Trace context
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    # Helpers
    "log_loop_event",
    "log_smoothing_stats",
    "log_mqtt_command",
    "log_error_with_context",
    # Component loggers
    "get_component_logger",
]
