"""
Effect Evaluator - time -> composed effect parameters.

The one place effect maths lives. Preview and export both call
evaluate_effects() so their output cannot diverge.
"""
from dataclasses import dataclass

from config import EFFECT_DEFAULT_INTENSITY, MAX_BLUR_PX, MIN_ZOOM, MAX_ZOOM
from models.media import EffectType


@dataclass(frozen=True)
class EffectParams:
    """Global modifiers applied to every layer of one frame."""
    alpha: float = 1.0
    grayscale: bool = False
    blur_px: float = 0.0
    zoom_scale: float = 1.0

    @property
    def needs_filter(self) -> bool:
        """True when the layer must go through the pixel filter pass."""
        return self.grayscale or self.blur_px > 0.0


IDENTITY = EffectParams()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


# Ramps that must land exactly on their target at the end time
_HOLD_END = (EffectType.ZOOM_IN, EffectType.ZOOM_OUT)


def effect_is_active(item, time: float) -> bool:
    """Half-open like media items; zoom ramps also include their end point."""
    if item.media.effect_type in _HOLD_END:
        return item.start_time <= time <= item.end_time
    return item.is_active(time)


def active_effects(items, time: float) -> list:
    return [item for item in items if item.is_effect and effect_is_active(item, time)]


def _intensity(item) -> float:
    intensity = item.media.intensity
    if intensity is None:
        intensity = EFFECT_DEFAULT_INTENSITY
    return intensity / 100.0


def evaluate_effects(items, time: float) -> EffectParams:
    """Compose all effect items active at *time*.

    Pure: depends only on the effect items in *items* and *time*.

    Args:
        items: Timeline snapshot (media items are ignored)
        time: Global timeline time in seconds

    Returns:
        EffectParams with alpha in [0, 1], blur_px in [0, 10] and
        zoom_scale in [0.1, 5.0]
    """
    alpha = 1.0
    grayscale = False
    blur_px = 0.0
    zoom = 1.0

    for item in active_effects(items, time):
        effect_type = item.media.effect_type
        progress = item.progress(time)

        if effect_type == EffectType.FADE_IN:
            alpha *= _clamp(progress, 0.0, 1.0)
        elif effect_type == EffectType.FADE_OUT:
            alpha *= _clamp(1.0 - progress, 0.0, 1.0)
        elif effect_type == EffectType.BLACK_WHITE:
            grayscale = True
        elif effect_type == EffectType.BLUR:
            # Instantaneous, concurrent blurs take the strongest
            blur_px = max(blur_px, _intensity(item) * MAX_BLUR_PX)
        elif effect_type in (EffectType.ZOOM_IN, EffectType.ZOOM_OUT):
            if effect_type == EffectType.ZOOM_IN:
                target = 1.0 + _intensity(item) * 2.0
            else:
                target = 1.0 - _intensity(item) * 0.8
            ramp = _clamp(progress, 0.0, 1.0)
            zoom *= 1.0 + (target - 1.0) * ramp

    return EffectParams(
        alpha=_clamp(alpha, 0.0, 1.0),
        grayscale=grayscale,
        blur_px=_clamp(blur_px, 0.0, MAX_BLUR_PX),
        zoom_scale=_clamp(zoom, MIN_ZOOM, MAX_ZOOM),
    )
