"""
Command Registry
================

Comandos remotos de centinela (start, stop, switch_camera, capture, ...).

Cada comando MQTT es un JSON {"command": ..., **argumentos}. El registry:
- Resuelve el nombre del comando al handler del CaptureController
- Valida los argumentos contra la firma del handler ANTES de despachar
  (un typo en el payload falla en el thread de paho, no en el event loop)
- Expone la ayuda de cada comando (status / CLI)
"""
import inspect
import logging
from typing import Any, Callable, Dict, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)


class CommandNotAvailableError(Exception):
    """El comando no está registrado (sin control plane o nombre desconocido)."""
    pass


class InvalidCommandArgumentsError(ValueError):
    """Los argumentos del payload no encajan con la firma del handler."""
    pass


class RegisteredCommand(NamedTuple):
    handler: Callable[..., Any]
    description: str
    signature: Optional[inspect.Signature]


def _signature_of(handler: Callable[..., Any]) -> Optional[inspect.Signature]:
    # Builtins sin metadata: se despachan sin validar
    try:
        return inspect.signature(handler)
    except (TypeError, ValueError):
        return None


class CommandRegistry:
    """
    Comandos disponibles para el control plane.

    Usage:
        registry = CommandRegistry()
        registry.register('switch_camera', controller.switch_camera,
                          "Cambia cámara (facing=user|environment)")

        registry.execute('switch_camera', facing='environment')
        registry.execute('switch_camera', fcing='user')   # InvalidCommandArgumentsError
        registry.execute('pause')                         # CommandNotAvailableError
    """

    def __init__(self):
        self._commands: Dict[str, RegisteredCommand] = {}

    def register(self, command: str, handler: Callable[..., Any], description: str = "") -> None:
        """Registra (o reemplaza, con warning) un comando."""
        if command in self._commands:
            logger.warning(f"⚠️ Comando '{command}' ya registrado, sobrescribiendo")

        self._commands[command] = RegisteredCommand(handler, description, _signature_of(handler))
        logger.debug(f"📝 Comando registrado: '{command}' - {description}")

    def execute(self, command: str, **kwargs: Any) -> Any:
        """
        Ejecuta un comando con los argumentos del payload.

        Returns:
            Resultado del handler (o None)

        Raises:
            CommandNotAvailableError: Si el comando no está registrado
            InvalidCommandArgumentsError: Si faltan argumentos o sobran
        """
        registered = self._commands.get(command)
        if registered is None:
            available = ', '.join(sorted(self.available_commands))
            raise CommandNotAvailableError(
                f"Command '{command}' not available. "
                f"Available commands: {available}"
            )

        if registered.signature is not None:
            try:
                registered.signature.bind(**kwargs)
            except TypeError as e:
                raise InvalidCommandArgumentsError(
                    f"Invalid arguments for '{command}': {e}"
                ) from None

        logger.debug(f"⚙️ Ejecutando comando: '{command}'", extra={"command_args": kwargs})
        return registered.handler(**kwargs)

    def is_available(self, command: str) -> bool:
        return command in self._commands

    @property
    def available_commands(self) -> Set[str]:
        return set(self._commands)

    def get_help(self) -> Dict[str, str]:
        """{comando: descripción}"""
        return {name: registered.description for name, registered in self._commands.items()}

    def __repr__(self) -> str:
        cmds = ', '.join(sorted(self.available_commands))
        return f"CommandRegistry({len(self._commands)} commands: {cmds})"
