"""
Visage - Legacy Shape Normalization

Mask definitions have been stored in several shapes over time:

- v1 kept the image under ``changes.img``
- v2 baked mirroring into a signed ``texture.scaleX/scaleY``
- v3 added the identity/overlay ``mode``
- v4 moved effect timing onto each effect (root ``delay`` is obsolete)

Everything in this module maps those shapes onto the current one. The rest
of the package only ever sees canonical Layer/Snapshot records.
"""

import logging
from copy import deepcopy
from typing import Any, Dict, Mapping, Optional, Tuple

from visage.constants import KIND_IDENTITY, KIND_OVERLAY, SOURCE_LOCAL
from visage.errors import MaskDataError
from visage.models.ring import RingConfig
from visage.utils.objects import get_property, has_property

logger = logging.getLogger(__name__)

_MISSING = object()


# ======================================================================
# CANONICAL CHANGE FIELDS
# ======================================================================
# canonical name -> accepted source paths, first match wins

CHANGE_FIELDS: Dict[str, Tuple[str, ...]] = {
    'name': ('name',),
    'image_source': ('image_source', 'texture.src', 'img'),
    'scale': ('scale',),
    'scale_x': ('scale_x', 'texture.scaleX', 'scaleX'),
    'scale_y': ('scale_y', 'texture.scaleY', 'scaleY'),
    'mirror_x': ('mirror_x', 'mirrorX', 'isFlippedX'),
    'mirror_y': ('mirror_y', 'mirrorY', 'isFlippedY'),
    'width': ('width',),
    'height': ('height',),
    'status_class': ('status_class', 'disposition'),
    'display_name': ('display_name', 'displayName'),
    'ring': ('ring',),
}

_STRING_FIELDS = ('name', 'image_source')
_FLOAT_FIELDS = ('scale', 'scale_x', 'scale_y', 'width', 'height')
_BOOL_FIELDS = ('mirror_x', 'mirror_y')
_INT_FIELDS = ('status_class', 'display_name')


def default_kind(source: Optional[str]) -> str:
    """Kind assumed for a definition that declares none"""
    return KIND_IDENTITY if source == SOURCE_LOCAL else KIND_OVERLAY


def _pick(raw: Mapping, paths: Tuple[str, ...]) -> Any:
    for path in paths:
        if has_property(raw, path):
            return get_property(raw, path)
    return _MISSING


def _coerce(name: str, value: Any) -> Any:
    """Coerce a present, non-null value; _MISSING when unusable"""
    if name in _STRING_FIELDS:
        # Empty strings never override anything
        return value if isinstance(value, str) and value else _MISSING
    if name in _BOOL_FIELDS:
        if isinstance(value, str):
            return value.lower() == 'true'
        return bool(value)
    if name in _FLOAT_FIELDS or name in _INT_FIELDS:
        if isinstance(value, bool):
            return _MISSING
        try:
            return int(value) if name in _INT_FIELDS else float(value)
        except (TypeError, ValueError):
            return _MISSING
    if name == 'ring':
        if isinstance(value, RingConfig):
            return value.collapsed()
        if isinstance(value, Mapping):
            return RingConfig.from_dict(value).collapsed()
        return _MISSING
    return value


def normalize_changes(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Map any known change-set shape onto canonical field names

    Absent fields stay absent. An explicit ``None`` is kept as ``None``
    (inherit from beneath). Values that cannot be interpreted are dropped.

    Args:
        raw: Change set in canonical, document or legacy shape

    Returns:
        Dict keyed by names from CHANGE_FIELDS

    Raises:
        MaskDataError: If raw is not a mapping
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise MaskDataError(f"Mask changes must be a mapping, got {type(raw).__name__}")

    changes: Dict[str, Any] = {}
    for name, paths in CHANGE_FIELDS.items():
        value = _pick(raw, paths)
        if value is _MISSING:
            continue
        if value is None:
            changes[name] = None
            continue
        value = _coerce(name, value)
        if value is _MISSING:
            logger.debug(f"Dropping unusable '{name}' value in mask changes")
            continue
        changes[name] = value
    return changes


def changes_to_dict(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Serialize canonical changes (rings become plain dicts)"""
    data = {}
    for name, value in changes.items():
        data[name] = value.to_dict() if isinstance(value, RingConfig) else deepcopy(value)
    return data


# ======================================================================
# STORED DEFINITION CLEANUP
# ======================================================================

def clean_mask_data(entry: Mapping[str, Any], kind_default: str = KIND_IDENTITY) -> Dict[str, Any]:
    """Upgrade a stored mask definition to the current shape

    Transformations:
        1. ``changes.img`` becomes ``changes.texture.src``
        2. ``changes.visual`` (dev artifact) is dropped
        3. Baked ``texture.scaleX/scaleY`` becomes atomic ``scale`` plus
           ``mirrorX``/``mirrorY``
        4. ``isFlippedX``/``isFlippedY`` become ``mirrorX``/``mirrorY``
        5. ``changes.effects`` moves to the root ``effects`` list
        6. A missing ``mode`` gets kind_default

    Args:
        entry: Stored definition (not modified)
        kind_default: Mode assumed when the entry declares none

    Returns:
        Cleaned deep copy
    """
    if not isinstance(entry, Mapping):
        raise MaskDataError(f"Mask definition must be a mapping, got {type(entry).__name__}")

    cleaned = deepcopy(dict(entry))
    c = cleaned.get('changes')
    if isinstance(c, dict):
        if c.get('img'):
            texture = c.setdefault('texture', {})
            if not texture.get('src'):
                texture['src'] = c['img']
        c.pop('img', None)
        c.pop('visual', None)

        tx = c.get('texture')
        if isinstance(tx, dict) and ('scaleX' in tx or 'scaleY' in tx):
            scale_x = tx.get('scaleX')
            scale_y = tx.get('scaleY')
            scale_x = 1.0 if scale_x is None else scale_x
            scale_y = 1.0 if scale_y is None else scale_y

            if abs(scale_x) != 1.0 and 'scale' not in c:
                c['scale'] = abs(scale_x)
            if 'mirrorX' not in c and scale_x < 0:
                c['mirrorX'] = True
            if 'mirrorY' not in c and scale_y < 0:
                c['mirrorY'] = True

            tx.pop('scaleX', None)
            tx.pop('scaleY', None)
            if not tx:
                del c['texture']

        for old, new in (('isFlippedX', 'mirrorX'), ('isFlippedY', 'mirrorY')):
            if old in c:
                flipped = c.pop(old)
                if new not in c and flipped is not None:
                    c[new] = bool(flipped)

        effects = c.pop('effects', None)
        if effects and not cleaned.get('effects'):
            cleaned['effects'] = effects

    if not cleaned.get('mode'):
        cleaned['mode'] = cleaned.pop('kind', None) or kind_default

    return cleaned


def scrub_payload(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively drop nulls, empty lists/dicts and untouched default blocks

    A ``light`` block is dropped when inactive and emitting nothing; an
    ``automation`` block when disabled with no conditions. Blocks that are
    switched off but configured are kept. The obsolete root ``delay`` is
    always removed.

    Modifies obj in place and returns it.
    """
    light = obj.get('light')
    if isinstance(light, dict) and light.get('active') in (False, 'false'):
        if not light.get('dim') and not light.get('bright'):
            del obj['light']

    automation = obj.get('automation')
    if isinstance(automation, dict) and automation.get('enabled') in (False, 'false'):
        if not automation.get('conditions'):
            del obj['automation']

    obj.pop('delay', None)

    for key in list(obj.keys()):
        value = obj[key]
        if value is None:
            del obj[key]
        elif isinstance(value, list):
            if not value:
                del obj[key]
        elif isinstance(value, dict):
            scrub_payload(value)
            if not value:
                del obj[key]
    return obj
