"""
Temporal Smoothing
==================

Suavizado exponencial frame-a-frame para reducir parpadeo de boxes y
confianzas.

Problema resuelto:
- Boxes que "tiemblan" entre frames con el mismo objeto quieto
- Confianzas que saltan (0.91 → 0.74 → 0.88) en el overlay

Algoritmo (por tick):
1. Filtrar raw por confidence >= confidence_threshold (ANTES de matchear)
2. Estado vacío → output = filtrados, sin suavizar
3. Para cada candidato:
   - Match (misma clase, centros cerca) → α·candidato + (1−α)·previo
     en x, y, width, height y confidence; etiqueta del candidato
   - Sin match → emitir el candidato sin cambios (sin fade-in)
4. Previos sin evidencia en este tick → se descartan (sin persistencia)
5. Nuevo estado = output (valores suavizados, no raw)

Ejemplo (α=0.1):

    previo:    person (10, 10, 100, 200) conf=0.90
    candidato: person (12, 11, 101, 199) conf=0.85
    output:    person (10.2, 10.1, 100.1, 199.9) conf=0.895

Determinismo: el output depende solo de (state, raw).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, NamedTuple, Tuple
import logging

from ..detection.types import Box, Detection, DetectionSet, SmoothingState
from ..errors import MalformedDetectionError
from .matching import DEFAULT_MAX_CENTER_DISTANCE, CenterDistanceMatcher

logger = logging.getLogger(__name__)


DEFAULT_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_SMOOTHING_ALPHA = 0.1


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class SmoothingConfig:
    """Configuración unificada para estrategias de suavizado"""
    mode: str = 'exponential'  # 'none', 'exponential'
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    alpha: float = DEFAULT_SMOOTHING_ALPHA  # Peso de la observación nueva
    max_center_distance: float = DEFAULT_MAX_CENTER_DISTANCE


# ============================================================================
# Malformed Detection Filter
# ============================================================================

def validate_detection(detection: Detection) -> Detection:
    """
    Raises:
        MalformedDetectionError: Si width <= 0 o height <= 0
    """
    if not detection.box.is_valid:
        raise MalformedDetectionError(
            f"Detection '{detection.class_label}' has non-positive size: "
            f"width={detection.box.width}, height={detection.box.height}"
        )
    return detection


def discard_malformed(detections: Iterable[Detection]) -> DetectionSet:
    """Descarta detecciones inválidas antes del suavizado (nunca propaga)."""
    valid: DetectionSet = []

    for detection in detections:
        try:
            valid.append(validate_detection(detection))
        except MalformedDetectionError as e:
            logger.debug(
                f"🗑️ Malformed detection dropped: {e}",
                extra={
                    "component": "temporal_smoother",
                    "event": "malformed_detection_dropped",
                    "class_name": detection.class_label,
                }
            )

    return valid


# ============================================================================
# Pure Smoothing Step
# ============================================================================

class _Tally(NamedTuple):
    filtered: int
    matched: int
    new: int
    dropped: int


def _blend(new: float, old: float, alpha: float) -> float:
    return alpha * new + (1 - alpha) * old


def _smooth_detection(candidate: Detection, previous: Detection, alpha: float) -> Detection:
    return Detection(
        class_label=candidate.class_label,
        confidence=_blend(candidate.confidence, previous.confidence, alpha),
        box=Box(*(
            _blend(new, old, alpha)
            for new, old in zip(candidate.box, previous.box)
        )),
    )


def _smooth(
    state: SmoothingState,
    raw: Iterable[Detection],
    confidence_threshold: float,
    alpha: float,
    matcher: CenterDistanceMatcher,
) -> Tuple[DetectionSet, SmoothingState, _Tally]:
    filtered = [d for d in raw if d.confidence >= confidence_threshold]

    if state.is_empty:
        return filtered, SmoothingState(tuple(filtered)), _Tally(len(filtered), 0, len(filtered), 0)

    previous = state.detections
    output: DetectionSet = []
    seen = set()
    matched_count = 0

    for candidate in filtered:
        matched = matcher.match(previous, candidate)
        if matched is None:
            output.append(candidate)
            continue

        seen.add(id(matched))
        matched_count += 1
        output.append(_smooth_detection(candidate, matched, alpha))

    tally = _Tally(
        filtered=len(filtered),
        matched=matched_count,
        new=len(filtered) - matched_count,
        dropped=sum(1 for p in previous if id(p) not in seen),
    )
    return output, SmoothingState(tuple(output)), tally


def smooth(
    state: SmoothingState,
    raw: Iterable[Detection],
    *,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    alpha: float = DEFAULT_SMOOTHING_ALPHA,
    max_distance: float = DEFAULT_MAX_CENTER_DISTANCE,
) -> Tuple[DetectionSet, SmoothingState]:
    """
    Un paso de suavizado: (state, raw) → (output, state').

    Args:
        state: Último set suavizado (vacío en el primer tick)
        raw: Detecciones crudas del tick actual (ya sin malformadas)
        confidence_threshold: Mínimo para entrar al suavizado
        alpha: Peso de la observación nueva (0.1 = mucha inercia)
        max_distance: Umbral de distancia entre centros para el matcher

    Returns:
        (output, nuevo estado). El nuevo estado contiene exactamente output.
    """
    matcher = CenterDistanceMatcher(max_distance)
    output, new_state, _ = _smooth(state, raw, confidence_threshold, alpha, matcher)
    return output, new_state


# ============================================================================
# Stateful Smoothers
# ============================================================================

class BaseDetectionSmoother(ABC):
    """
    Clase base abstracta para estrategias de suavizado.

    Interface contract:
    - process(): Recibe detecciones crudas, retorna el set a renderizar
    - reset(): Limpia estado interno (start/stop del loop, cambio de cámara)
    - get_stats(): Métricas acumuladas
    """

    @abstractmethod
    def process(self, detections: Iterable[Detection]) -> DetectionSet:
        pass

    @abstractmethod
    def reset(self) -> None:
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        pass

    @property
    def state(self) -> SmoothingState:
        return SmoothingState.empty()


class ExponentialSmoother(BaseDetectionSmoother):
    """
    Dueño exclusivo del SmoothingState de un loop.

    Nunca se comparte entre loops concurrentes: el FrameLoopController hace
    reset() en cada start() y stop().
    """

    def __init__(
        self,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        alpha: float = DEFAULT_SMOOTHING_ALPHA,
        max_center_distance: float = DEFAULT_MAX_CENTER_DISTANCE,
    ):
        self.confidence_threshold = confidence_threshold
        self.alpha = alpha
        self.max_center_distance = max_center_distance
        self.matcher = CenterDistanceMatcher(max_center_distance)

        self._state = SmoothingState.empty()
        self._stats = self._empty_stats()

        logger.info(
            f"ExponentialSmoother initialized: alpha={alpha:.2f}, "
            f"confidence_threshold={confidence_threshold:.2f}, "
            f"max_center_distance={max_center_distance:.1f}"
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'ticks': 0,
            'total_raw': 0,
            'total_filtered': 0,
            'total_matched': 0,
            'total_new': 0,
            'total_dropped': 0,
        }

    @property
    def state(self) -> SmoothingState:
        return self._state

    def process(self, detections: Iterable[Detection]) -> DetectionSet:
        raw = list(detections)
        output, self._state, tally = _smooth(
            self._state,
            raw,
            self.confidence_threshold,
            self.alpha,
            self.matcher,
        )

        self._stats['ticks'] += 1
        self._stats['total_raw'] += len(raw)
        self._stats['total_filtered'] += tally.filtered
        self._stats['total_matched'] += tally.matched
        self._stats['total_new'] += tally.new
        self._stats['total_dropped'] += tally.dropped

        logger.debug(
            f"Smoothing: {len(raw)} raw → {len(output)} smoothed "
            f"(matched={tally.matched}, new={tally.new}, dropped={tally.dropped})"
        )
        return output

    def reset(self) -> None:
        self._state = SmoothingState.empty()
        logger.debug("🔄 Smoothing state reset")

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats['mode'] = 'exponential'
        stats['active_detections'] = len(self._state)

        if stats['total_filtered'] > 0:
            stats['match_ratio'] = stats['total_matched'] / stats['total_filtered']
        else:
            stats['match_ratio'] = 0.0

        return stats


class NoOpSmoother(BaseDetectionSmoother):
    """
    Sin suavizado (baseline): solo aplica el umbral de confianza.
    """

    def __init__(self, confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        self.confidence_threshold = confidence_threshold

    def process(self, detections: Iterable[Detection]) -> DetectionSet:
        return [d for d in detections if d.confidence >= self.confidence_threshold]

    def reset(self) -> None:
        pass

    def get_stats(self) -> Dict[str, Any]:
        return {'mode': 'none'}


# ============================================================================
# Factory
# ============================================================================

def create_smoother(config: SmoothingConfig) -> BaseDetectionSmoother:
    """
    Factory: valida configuración y crea estrategia de suavizado.

    Raises:
        ValueError: Si configuración inválida
    """
    mode = config.mode.lower()

    if mode not in ['none', 'exponential']:
        raise ValueError(
            f"Invalid smoothing mode: '{mode}'. "
            f"Supported: 'none', 'exponential'"
        )

    if not (0.0 <= config.confidence_threshold <= 1.0):
        raise ValueError(
            f"confidence_threshold must be in [0.0, 1.0], got {config.confidence_threshold}"
        )

    if mode == 'none':
        logger.info("🔲 Smoothing: NONE (confidence filter only)")
        return NoOpSmoother(confidence_threshold=config.confidence_threshold)

    if not (0.0 < config.alpha <= 1.0):
        raise ValueError(f"alpha must be in (0.0, 1.0], got {config.alpha}")
    if config.max_center_distance <= 0:
        raise ValueError(
            f"max_center_distance must be > 0, got {config.max_center_distance}"
        )

    logger.info(
        f"〰️ Smoothing: EXPONENTIAL (alpha={config.alpha:.2f}, "
        f"threshold={config.confidence_threshold:.2f}, "
        f"max_distance={config.max_center_distance:.1f})"
    )

    return ExponentialSmoother(
        confidence_threshold=config.confidence_threshold,
        alpha=config.alpha,
        max_center_distance=config.max_center_distance,
    )
