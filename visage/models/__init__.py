"""
Visage - Data Models

Value objects and collections describing an entity's true form and the
layers composed on top of it. Nothing in here touches storage or effects.

Public API: import Snapshot, Layer, EffectSpec, LayerStack, RingConfig and
ScaleState from visage.models.
"""

from .transform import ScaleState, decode_signed, encode_signed
from .ring import RingConfig, RingEffect, encode_effects, decode_effects
from .snapshot import Snapshot
from .layer import EffectSpec, Layer
from .stack import LayerStack

__all__ = [
    'ScaleState', 'decode_signed', 'encode_signed',
    'RingConfig', 'RingEffect', 'encode_effects', 'decode_effects',
    'Snapshot', 'EffectSpec', 'Layer', 'LayerStack',
]
