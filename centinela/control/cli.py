#!/usr/bin/env python3
"""
CLI para enviar comandos MQTT a centinela
=========================================

Uso:
    centinela-control start
    centinela-control stop
    centinela-control switch_camera --arg facing=environment
    centinela-control switch_mode --arg mode=single_shot
    centinela-control capture --arg image_path=photos/desk.jpg
    centinela-control status
"""
import sys
import json
import argparse
from typing import Dict, List, Optional

import paho.mqtt.client as mqtt

COMMANDS = [
    "start",
    "stop",
    "switch_camera",
    "switch_mode",
    "switch_model",
    "capture",
    "snapshot",
    "status",
    "smoothing_stats",
    "shutdown",
]


def parse_arguments(pairs: List[str]) -> Dict[str, str]:
    """["facing=user", ...] → {"facing": "user", ...}"""
    arguments = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid argument '{pair}', expected key=value")
        arguments[key] = value
    return arguments


def build_payload(command: str, arguments: Optional[Dict[str, str]] = None) -> str:
    message = {"command": command}
    message.update(arguments or {})
    return json.dumps(message)


def send_command(broker: str, port: int, topic: str, command: str,
                 arguments: Optional[Dict[str, str]] = None) -> bool:
    """Envía un comando MQTT (QoS 1) y espera el ack del broker"""
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id="centinela_control_cli",
        protocol=mqtt.MQTTv5,
    )

    print(f"🔌 Conectando a {broker}:{port}...")
    try:
        client.connect(broker, port, keepalive=60)
    except OSError as e:
        print(f"❌ Error conectando: {e}")
        return False

    client.loop_start()
    try:
        print(f"📤 Enviando comando: {command} {arguments or ''}")
        result = client.publish(topic, build_payload(command, arguments), qos=1)
        result.wait_for_publish(timeout=5.0)

        if result.rc != mqtt.MQTT_ERR_SUCCESS or not result.is_published():
            print(f"❌ Error enviando comando: {result.rc}")
            return False

        print("✅ Comando enviado exitosamente")
        return True
    finally:
        client.disconnect()
        client.loop_stop()


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="CLI para controlar centinela vía MQTT"
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="Comando a enviar"
    )
    parser.add_argument(
        "--arg",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Argumento del comando (repetible), ej: --arg facing=environment"
    )
    parser.add_argument(
        "--broker",
        default="localhost",
        help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=1883,
        help="MQTT broker port (default: 1883)"
    )
    parser.add_argument(
        "--topic",
        default="centinela/control/commands",
        help="MQTT topic (default: centinela/control/commands)"
    )

    args = parser.parse_args(argv)

    try:
        arguments = parse_arguments(args.arg)
    except ValueError as e:
        parser.error(str(e))

    success = send_command(args.broker, args.port, args.topic, args.command, arguments)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
