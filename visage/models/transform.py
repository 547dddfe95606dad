"""Scale state decoupled into magnitude and mirror axes."""
from dataclasses import dataclass
from typing import Optional, Tuple

from visage.constants import DEFAULT_SCALE


def decode_signed(value: Optional[float], default: float = DEFAULT_SCALE) -> Tuple[float, bool]:
    """Split a sign-encoded scale into (magnitude, mirrored).

    None or non-numeric input decodes as the default, unmirrored.
    """
    if value is None or isinstance(value, bool):
        return abs(default), False
    try:
        value = float(value)
    except (TypeError, ValueError):
        return abs(default), False
    return abs(value), value < 0


def encode_signed(magnitude: float, mirrored: bool) -> float:
    """Bake magnitude and mirror flag back into one signed scale"""
    return abs(magnitude) * (-1 if mirrored else 1)


@dataclass
class ScaleState:
    """Scale state: per-axis magnitude plus independent mirror flags.

    Magnitudes are always positive. The mirror flags carry the orientation
    that legacy storage encodes as a negative scale.
    """
    magnitude_x: float = DEFAULT_SCALE
    magnitude_y: float = DEFAULT_SCALE
    mirror_x: bool = False
    mirror_y: bool = False

    @classmethod
    def from_signed(cls, scale_x: Optional[float], scale_y: Optional[float]) -> 'ScaleState':
        """Decouple a sign-encoded (scaleX, scaleY) pair"""
        mx, fx = decode_signed(scale_x)
        my, fy = decode_signed(scale_y)
        return cls(mx, my, fx, fy)

    @property
    def magnitude(self) -> float:
        """Uniform magnitude (the X axis when the axes differ)"""
        return self.magnitude_x

    def set_magnitude(self, value: float):
        """Atomic magnitude override, affects both axes equally"""
        self.magnitude_x = abs(float(value))
        self.magnitude_y = abs(float(value))

    def to_signed(self) -> Tuple[float, float]:
        """Re-bake into (signedScaleX, signedScaleY)"""
        return (
            encode_signed(self.magnitude_x, self.mirror_x),
            encode_signed(self.magnitude_y, self.mirror_y),
        )

    def __iter__(self):
        """Allow tuple unpacking: mx, my, fx, fy = state"""
        return iter((self.magnitude_x, self.magnitude_y, self.mirror_x, self.mirror_y))
