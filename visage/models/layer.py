"""
Visage - Layer Model

A Layer is one applied mask: a partial set of property overrides plus the
effects that play while it is active. Layers are immutable; re-applying a
mask builds a new Layer.

Change semantics:
    - key absent: the mask does not touch that property
    - key present with None: inherit whatever the layers beneath set
    - any other value: override
"""

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from visage.constants import (
    KIND_IDENTITY, KIND_OVERLAY, LAYER_KINDS,
    EFFECT_VISUAL, EFFECT_AUDIO, Z_ABOVE, Z_BELOW,
    IDENTITY_TAG, OVERLAY_TAG_PREFIX,
)
from visage.errors import MaskDataError
from visage.models.migration import changes_to_dict, default_kind, normalize_changes

logger = logging.getLogger(__name__)


def effect_tag(layer_id: str, is_identity: bool) -> str:
    """Tag shared by every process started for a layer slot"""
    return IDENTITY_TAG if is_identity else f"{OVERLAY_TAG_PREFIX}{layer_id}"


def _first(data: Mapping, *keys, default=None):
    """Value of the first key present in data"""
    for key in keys:
        if key in data:
            return data[key]
    return default


def _float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ======================================================================
# EFFECT DEFINITIONS
# ======================================================================

@dataclass(frozen=True)
class EffectSpec:
    """One visual or audio effect attached to a layer

    Attributes:
        id: Effect id, unique within its layer
        type: "visual" or "audio"
        asset_path: File path, wildcard pattern or effect database key
        loop: Looping effects run until removed, others play once
        scale: Size relative to the entity (visual)
        opacity: Visual opacity, or audio volume when set
        rotation: Rotation in degrees (visual)
        z_order: "above" or "below" the entity (visual)
        disabled: Disabled effects are kept but never started
        delay: Start delay in seconds, may be negative
        fade_in: Audio fade-in in milliseconds
        fade_out: Audio fade-out in milliseconds
    """
    id: str
    type: str = EFFECT_VISUAL
    asset_path: str = ""
    loop: bool = True
    scale: float = 1.0
    opacity: Optional[float] = None
    rotation: float = 0.0
    z_order: str = Z_ABOVE
    disabled: bool = False
    delay: float = 0.0
    fade_in: float = 0.0
    fade_out: float = 0.0
    label: str = ""

    @property
    def is_visual(self) -> bool:
        return self.type == EFFECT_VISUAL

    @property
    def is_audio(self) -> bool:
        return self.type == EFFECT_AUDIO

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: int = 0) -> 'EffectSpec':
        """Build from a stored effect entry (camelCase keys accepted)"""
        if not isinstance(data, Mapping):
            raise MaskDataError(f"Effect entry must be a mapping, got {type(data).__name__}")

        effect_type = data.get('type') or EFFECT_VISUAL
        if effect_type not in (EFFECT_VISUAL, EFFECT_AUDIO):
            raise MaskDataError(f"Unknown effect type: {effect_type!r}")

        z_order = _first(data, 'z_order', 'zOrder', default=Z_ABOVE)
        opacity = data.get('opacity')
        loop = data.get('loop')

        return cls(
            id=str(data.get('id') or f"effect-{index}"),
            type=effect_type,
            asset_path=_first(data, 'asset_path', 'path', default="") or "",
            loop=True if loop is None else bool(loop),
            scale=_float(data.get('scale'), 1.0),
            opacity=None if opacity is None else _float(opacity, None),
            rotation=_float(data.get('rotation'), 0.0),
            z_order=Z_BELOW if z_order == Z_BELOW else Z_ABOVE,
            disabled=bool(data.get('disabled', False)),
            delay=_float(data.get('delay'), 0.0),
            fade_in=_float(_first(data, 'fade_in', 'fadeIn'), 0.0),
            fade_out=_float(_first(data, 'fade_out', 'fadeOut'), 0.0),
            label=data.get('label') or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'type': self.type,
            'asset_path': self.asset_path,
            'loop': self.loop,
            'scale': self.scale,
            'rotation': self.rotation,
            'z_order': self.z_order,
            'disabled': self.disabled,
            'delay': self.delay,
            'fade_in': self.fade_in,
            'fade_out': self.fade_out,
        }
        if self.opacity is not None:
            data['opacity'] = self.opacity
        if self.label:
            data['label'] = self.label
        return data


# ======================================================================
# LAYER
# ======================================================================

@dataclass(frozen=True)
class Layer:
    """One applied mask in an entity's stack

    Attributes:
        id: Mask id, unique within a stack
        label: Display label
        kind: "identity" (replaces the base look) or "overlay"
        changes: Canonical partial properties (read-only view)
        effects: Effects in declaration order
        source: "local", "global" or None when unknown
    """
    id: str
    label: str = "Unknown"
    kind: str = KIND_OVERLAY
    changes: Mapping[str, Any] = field(default_factory=dict)
    effects: Tuple[EffectSpec, ...] = ()
    source: Optional[str] = None

    def __post_init__(self):
        if self.kind not in LAYER_KINDS:
            raise MaskDataError(f"Unknown layer kind: {self.kind!r}")
        if not isinstance(self.changes, MappingProxyType):
            object.__setattr__(self, 'changes', MappingProxyType(dict(self.changes)))
        if not isinstance(self.effects, tuple):
            object.__setattr__(self, 'effects', tuple(self.effects))

    # ========================================
    # Change access
    # ========================================

    def has(self, name: str) -> bool:
        """True if the field is part of this layer (None included)"""
        return name in self.changes

    def get(self, name: str, default: Any = None) -> Any:
        return self.changes.get(name, default)

    def overrides(self, name: str) -> bool:
        """True if the field carries a concrete override (present and not None)"""
        return self.changes.get(name) is not None

    @property
    def is_identity(self) -> bool:
        return self.kind == KIND_IDENTITY

    def tag(self, is_identity: Optional[bool] = None) -> str:
        """Effect tag for this layer

        Args:
            is_identity: Whether the layer plays in the identity slot;
                defaults to the layer's own kind
        """
        if is_identity is None:
            is_identity = self.is_identity
        return effect_tag(self.id, is_identity)

    def active_effects(self) -> List[EffectSpec]:
        return [e for e in self.effects if not e.disabled]

    def with_kind(self, kind: str) -> 'Layer':
        return replace(self, kind=kind)

    # ========================================
    # Serialization
    # ========================================

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: Optional[str] = None,
                  kind: Optional[str] = None) -> 'Layer':
        """Build a layer from a mask definition or a stored stack entry

        Accepts the canonical shape written by to_dict() as well as stored
        mask definitions (``mode``, document-shaped ``changes`` and legacy
        ``changes.effects``).

        Args:
            data: Mask definition or stack entry
            source: Library the definition came from, if known
            kind: Force this kind instead of the declared one

        Raises:
            MaskDataError: If data is not a mapping or has no id
        """
        if not isinstance(data, Mapping):
            raise MaskDataError(f"Layer data must be a mapping, got {type(data).__name__}")
        if not data.get('id'):
            raise MaskDataError("Layer data has no id")

        source = source or data.get('source')
        raw_changes = data.get('changes') or {}
        changes = normalize_changes(raw_changes)

        raw_effects = data.get('effects')
        if raw_effects is None and isinstance(raw_changes, Mapping):
            raw_effects = raw_changes.get('effects')
        effects = tuple(
            EffectSpec.from_dict(entry, index)
            for index, entry in enumerate(raw_effects or ())
        )

        declared = kind or data.get('kind') or data.get('mode') or default_kind(source)
        return cls(
            id=str(data['id']),
            label=data.get('label') or "Unknown",
            kind=declared,
            changes=changes,
            effects=effects,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'label': self.label,
            'kind': self.kind,
            'changes': changes_to_dict(self.changes),
            'effects': [e.to_dict() for e in self.effects],
        }
        if self.source:
            data['source'] = self.source
        return data

    def __repr__(self) -> str:
        return f"Layer(id={self.id!r}, kind={self.kind!r}, fields={sorted(self.changes)})"


def layers_from_dicts(entries: Optional[Iterable[Any]]) -> List[Layer]:
    """Decode stored stack entries, skipping (and logging) unusable ones"""
    layers = []
    for entry in entries or ():
        try:
            layers.append(Layer.from_dict(entry))
        except MaskDataError as e:
            logger.warning(f"Skipping unreadable stack entry: {e}")
    return layers
