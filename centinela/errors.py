"""
Error Taxonomy
==============

Errores del loop de captura y estabilización.

Política: fail-fast-and-stop
- Ningún error se reintenta dentro del core
- El caller decide si reinicia el loop

Taxonomía:
- MalformedDetectionError: local, recuperado (la detección se descarta)
- SourceUnavailableError: detección/adquisición de frame falló (fatal para el tick)
- AlreadyRunningError: start() con un LoopHandle activo (mal uso del caller)
- RenderError: el renderer falló (tratado igual que SourceUnavailableError)
"""


class CentinelaError(Exception):
    """Base de todos los errores del paquete."""
    pass


class MalformedDetectionError(CentinelaError):
    """Detección con width/height no positivos. Nunca se propaga fuera del smoother."""
    pass


class SourceUnavailableError(CentinelaError):
    """Modelo no cargado, frame inválido o cámara no disponible."""
    pass


class AlreadyRunningError(CentinelaError):
    """start() llamado mientras otro LoopHandle está activo."""
    pass


class RenderError(CentinelaError):
    """El sink de anotaciones falló al dibujar."""
    pass
