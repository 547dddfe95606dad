"""
Visage - Snapshot Model

The snapshot is the entity's "true form": the visual properties it had
before any layer was applied. It is stored on the entity in baked document
shape and decoded here into independent scale/mirror axes.

Reading is lenient: older stored shapes (top-level scaleX/scaleY, "img"
instead of texture.src) and missing fields decode to neutral defaults.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from visage.constants import (
    DEFAULT_WIDTH, DEFAULT_HEIGHT, DEFAULT_STATUS_CLASS,
)
from visage.models.ring import RingConfig
from visage.models.transform import ScaleState
from visage.utils.objects import get_property


def _number(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Snapshot:
    """True-form visual state of an entity

    Attributes:
        name: Display name
        image_source: Image/video path
        scale: Magnitude per axis and mirror flags
        width, height: Footprint in grid units
        status_class: Disposition classification (-2..1)
        ring: Dynamic ring configuration
        display_name: Name visibility mode, kept only when present
    """
    name: str = ""
    image_source: str = ""
    scale: ScaleState = field(default_factory=ScaleState)
    width: float = DEFAULT_WIDTH
    height: float = DEFAULT_HEIGHT
    status_class: int = DEFAULT_STATUS_CLASS
    ring: RingConfig = field(default_factory=RingConfig.disabled)
    display_name: Optional[int] = None

    # ========================================
    # Scale accessors
    # ========================================

    @property
    def scale_magnitude(self) -> float:
        return self.scale.magnitude

    @property
    def mirror_x(self) -> bool:
        return self.scale.mirror_x

    @property
    def mirror_y(self) -> bool:
        return self.scale.mirror_y

    # ========================================
    # Document conversion
    # ========================================

    @classmethod
    def from_document(cls, data: Optional[Mapping[str, Any]]) -> 'Snapshot':
        """Extract the tracked visual state from a document or stored snapshot

        Never fails; every missing or malformed field falls back to its
        neutral default.
        """
        if not isinstance(data, Mapping):
            return cls()

        image = get_property(data, 'texture.src')
        if image is None:
            image = data.get('img')

        scale_x = get_property(data, 'texture.scaleX', data.get('scaleX'))
        scale_y = get_property(data, 'texture.scaleY', data.get('scaleY'))
        scale = ScaleState.from_signed(scale_x, scale_y)

        # Atomic fields win over the baked pair when a stored shape has both
        atomic = data.get('scale')
        if atomic is not None and not isinstance(atomic, (bool, Mapping)):
            scale.set_magnitude(_number(atomic, scale.magnitude))
        for axis in ('mirror_x', 'mirror_y'):
            legacy = data.get('mirrorX' if axis == 'mirror_x' else 'mirrorY')
            if isinstance(legacy, bool):
                setattr(scale, axis, legacy)

        try:
            status = int(data.get('disposition', DEFAULT_STATUS_CLASS))
        except (TypeError, ValueError):
            status = DEFAULT_STATUS_CLASS

        return cls(
            name=data.get('name') or "",
            image_source=image or "",
            scale=scale,
            width=_number(data.get('width'), DEFAULT_WIDTH),
            height=_number(data.get('height'), DEFAULT_HEIGHT),
            status_class=status,
            ring=RingConfig.from_dict(data.get('ring')),
            display_name=data.get('displayName'),
        )

    def to_document(self) -> Dict[str, Any]:
        """Bake into document shape (sign-encoded scale)"""
        scale_x, scale_y = self.scale.to_signed()
        data = {
            'name': self.name,
            'texture': {
                'src': self.image_source,
                'scaleX': scale_x,
                'scaleY': scale_y,
            },
            'width': self.width,
            'height': self.height,
            'disposition': self.status_class,
            'ring': self.ring.to_dict(),
        }
        if self.display_name is not None:
            data['displayName'] = self.display_name
        return data

    def copy(self) -> 'Snapshot':
        return deepcopy(self)
