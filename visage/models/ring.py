"""
Visage - Dynamic Ring Model

The ring is a colored status ring drawn around the entity. It is composed
as one atomic unit: a layer that declares a ring replaces the whole ring.

Ring effects are independent boolean flags packed into one integer.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from visage.constants import (
    RING_PULSE, RING_GRADIENT, RING_WAVE, RING_INVISIBILITY,
    DEFAULT_RING_COLOR, DEFAULT_RING_BACKGROUND, DEFAULT_SUBJECT_SCALE,
)


class RingEffect(IntFlag):
    """Ring effect bits"""
    NONE = 0
    PULSE = RING_PULSE
    GRADIENT = RING_GRADIENT
    WAVE = RING_WAVE
    INVISIBILITY = RING_INVISIBILITY


# Flag name -> bit, in display order
RING_FLAGS = {
    'pulse': RingEffect.PULSE,
    'gradient': RingEffect.GRADIENT,
    'wave': RingEffect.WAVE,
    'invisibility': RingEffect.INVISIBILITY,
}


def encode_effects(flags: Union[Mapping[str, bool], Iterable[str]]) -> int:
    """Pack named flags into the effects integer

    Args:
        flags: Either {name: bool} or an iterable of enabled names

    Raises:
        ValueError: For an unknown flag name
    """
    if isinstance(flags, Mapping):
        names = [name for name, on in flags.items() if on]
    else:
        names = list(flags)

    value = RingEffect.NONE
    for name in names:
        try:
            value |= RING_FLAGS[name]
        except KeyError:
            raise ValueError(f"Unknown ring effect: {name!r}") from None
    return int(value)


def decode_effects(value: Optional[int]) -> Dict[str, bool]:
    """Unpack the effects integer into {name: bool} for every known flag"""
    bits = int(value or 0)
    return {name: (bits & flag) != 0 for name, flag in RING_FLAGS.items()}


@dataclass
class RingConfig:
    """Ring configuration as stored on an entity document.

    Fields left as None were absent in the source data and are omitted
    again by to_dict(), so a captured ring restores exactly.
    """
    enabled: bool = False
    ring_color: Optional[str] = None
    background_color: Optional[str] = None
    subject_texture: Optional[str] = None
    subject_scale: Optional[float] = None
    effects: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def disabled(cls) -> 'RingConfig':
        """Minimal disabled marker carrying no color data"""
        return cls(enabled=False)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'RingConfig':
        """Build from document shape; missing or malformed data yields a disabled ring"""
        if not isinstance(data, Mapping):
            return cls.disabled()

        colors = data.get('colors') if isinstance(data.get('colors'), Mapping) else {}
        subject = data.get('subject') if isinstance(data.get('subject'), Mapping) else {}
        try:
            effects = int(data.get('effects') or 0)
        except (TypeError, ValueError):
            effects = 0

        extra = {
            k: deepcopy(v) for k, v in data.items()
            if k not in ('enabled', 'colors', 'subject', 'effects')
        }
        return cls(
            enabled=bool(data.get('enabled', False)),
            ring_color=colors.get('ring'),
            background_color=colors.get('background'),
            subject_texture=subject.get('texture'),
            subject_scale=subject.get('scale'),
            effects=effects,
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'enabled': self.enabled}
        colors = {}
        if self.ring_color is not None:
            colors['ring'] = self.ring_color
        if self.background_color is not None:
            colors['background'] = self.background_color
        if colors:
            data['colors'] = colors
        subject = {}
        if self.subject_texture is not None:
            subject['texture'] = self.subject_texture
        if self.subject_scale is not None:
            subject['scale'] = self.subject_scale
        if subject:
            data['subject'] = subject
        if self.effects:
            data['effects'] = self.effects
        data.update(deepcopy(self.extra))
        return data

    def collapsed(self) -> 'RingConfig':
        """The form a layer contributes: itself when enabled, else the bare marker"""
        if self.enabled:
            return RingConfig(
                enabled=True,
                ring_color=self.ring_color,
                background_color=self.background_color,
                subject_texture=self.subject_texture,
                subject_scale=self.subject_scale,
                effects=self.effects,
            )
        return RingConfig.disabled()

    @property
    def flags(self) -> Dict[str, bool]:
        return decode_effects(self.effects)

    def context(self) -> Dict[str, Any]:
        """Decoded view with display defaults filled in"""
        flags = self.flags
        return {
            'enabled': self.enabled,
            'colors': {
                'ring': self.ring_color or DEFAULT_RING_COLOR,
                'background': self.background_color or DEFAULT_RING_BACKGROUND,
            },
            'subject': {
                'texture': self.subject_texture or "",
                'scale': self.subject_scale if self.subject_scale is not None else DEFAULT_SUBJECT_SCALE,
            },
            'raw_effects': self.effects,
            'has_pulse': flags['pulse'],
            'has_gradient': flags['gradient'],
            'has_wave': flags['wave'],
            'has_invisibility': flags['invisibility'],
        }
