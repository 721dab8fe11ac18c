"""
MQTT Control Plane
==================

Control Plane del capture pipeline vía MQTT (QoS 1).

Payload de comando (JSON):
    {"command": "switch_camera", "facing": "environment"}

- "command": nombre registrado en CommandRegistry
- resto de campos: kwargs para el handler

Status (retained):
    {"status": "running", "timestamp": ..., "client_id": ..., ...detalles}
"""
import json
import logging
from datetime import datetime
from threading import Event
from typing import Any, Optional

import paho.mqtt.client as mqtt

from .registry import CommandRegistry, CommandNotAvailableError, InvalidCommandArgumentsError
from ..logging import (
    trace_context,
    generate_trace_id,
    log_mqtt_command,
    log_error_with_context
)

logger = logging.getLogger(__name__)


class MQTTControlPlane:
    """
    Control Plane vía MQTT.

    Comandos típicos (registrados por CaptureController):
    - start / stop: captura continua
    - switch_camera, switch_mode, switch_model: restart protocol
    - capture: single-shot sobre una imagen
    - snapshot: guarda el último frame anotado
    - status, smoothing_stats: introspección
    - shutdown: finaliza el servicio

    Usage:
        control_plane = MQTTControlPlane(...)
        control_plane.command_registry.register('stop', controller.stop_stream, "Detiene captura")
        control_plane.connect()

    Note:
        Los callbacks de paho corren en el thread de red del cliente. Los
        handlers registrados deben ser thread-safe (CaptureController los
        re-despacha al event loop).
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        command_topic: str = "centinela/control/commands",
        status_topic: str = "centinela/control/status",
        client_id: str = "centinela_control",
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id

        self.command_registry = CommandRegistry()

        # MQTT Client (paho-mqtt 2.x callback API)
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        self._connected = Event()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback cuando se conecta al broker"""
        if reason_code.is_failure:
            logger.error(
                "Failed to connect to MQTT broker",
                extra={
                    "component": "control_plane",
                    "event": "connection_error",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port,
                    "reason_code": str(reason_code)
                }
            )
            return

        logger.info(
            "Control Plane connected to broker",
            extra={
                "component": "control_plane",
                "event": "broker_connected",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port
            }
        )
        self.client.subscribe(self.command_topic, qos=1)
        logger.info(
            "Subscribed to command topic",
            extra={
                "component": "control_plane",
                "event": "topic_subscribed",
                "topic": self.command_topic,
                "qos": 1
            }
        )
        self._connected.set()
        self.publish_status("connected")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback cuando se desconecta del broker"""
        logger.warning(
            "Control Plane disconnected from broker",
            extra={
                "component": "control_plane",
                "event": "broker_disconnected",
                "reason_code": str(reason_code)
            }
        )
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        """
        Callback cuando recibe un mensaje MQTT.

        Usa CommandRegistry para ejecutar comandos.
        Propaga trace_id para correlation en toda la call stack.
        """
        try:
            payload = msg.payload.decode('utf-8')
            command_data = json.loads(payload)
            if not isinstance(command_data, dict):
                raise ValueError(f"Command payload must be a JSON object, got {type(command_data).__name__}")

            command = str(command_data.get('command', '')).lower()
            arguments = {k: v for k, v in command_data.items() if k != 'command'}

            trace_id = generate_trace_id(prefix=f"cmd-{command}")

            with trace_context(trace_id):
                log_mqtt_command(
                    logger,
                    command=command,
                    topic=msg.topic,
                    payload=command_data,
                    trace_id=trace_id
                )

                try:
                    self.command_registry.execute(command, **arguments)
                    logger.debug(
                        f"✅ Comando '{command}' ejecutado correctamente",
                        extra={"command": command, "trace_id": trace_id}
                    )

                except InvalidCommandArgumentsError as e:
                    logger.warning(
                        f"⚠️ {e}",
                        extra={
                            "command": command,
                            "trace_id": trace_id,
                            "arguments": arguments,
                        }
                    )

                except CommandNotAvailableError as e:
                    logger.warning(
                        f"⚠️ {e}",
                        extra={
                            "command": command,
                            "trace_id": trace_id,
                            "available_commands": sorted(self.command_registry.available_commands)
                        }
                    )

        except json.JSONDecodeError:
            logger.error(
                f"❌ Error decodificando JSON: {msg.payload}",
                extra={
                    "component": "control_plane",
                    "mqtt_topic": msg.topic,
                    "raw_payload": str(msg.payload)
                }
            )
        except Exception as e:
            log_error_with_context(
                logger,
                message="Error procesando mensaje MQTT",
                exception=e,
                component="control_plane",
                event="message_processing_error",
                mqtt_topic=msg.topic
            )

    def publish_status(self, status: str, **details: Any):
        """
        Publica el estado actual (retained).

        Args:
            status: Estado a publicar (ej: "running", "stopped", "faulted")
            **details: Campos adicionales (error, mode, facing, ...)
        """
        message = {
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "client_id": self.client_id,
        }
        message.update(details)

        self.client.publish(
            self.status_topic,
            json.dumps(message, default=str),
            qos=1,
            retain=True
        )
        logger.info(
            "Status published",
            extra={
                "component": "control_plane",
                "event": "status_published",
                "status": status,
                "topic": self.status_topic
            }
        )

    def connect(self, timeout: float = 5.0) -> bool:
        """Conecta al broker MQTT"""
        try:
            logger.info(
                "Connecting to MQTT broker",
                extra={
                    "component": "control_plane",
                    "event": "connection_attempt",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port
                }
            )
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            return self._connected.wait(timeout=timeout)
        except OSError as e:
            logger.error(
                "Failed to connect to MQTT",
                extra={
                    "component": "control_plane",
                    "event": "connection_exception",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port,
                    "error": str(e),
                    "error_type": type(e).__name__
                }
            )
            return False

    def disconnect(self):
        """Desconecta del broker MQTT"""
        logger.info("🔌 Desconectando Control Plane...")
        self.publish_status("disconnected")
        self.client.loop_stop()
        self.client.disconnect()
