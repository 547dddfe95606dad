"""
Visage - Layer Stack

Ordered collection of the layers applied to one entity, bottom first.

Invariants:
    - at most one layer has kind "identity", and it sits at index 0
    - layer ids are unique; re-adding an id replaces the layer in place
"""

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional

from visage.constants import (
    DATA_NAMESPACE, FLAG_STACK, FLAG_LEGACY_STACK, FLAG_IDENTITY,
    KIND_IDENTITY, KIND_OVERLAY,
)
from visage.models.layer import Layer, layers_from_dicts
from visage.utils.objects import get_property

logger = logging.getLogger(__name__)


def flag_path(key: str) -> str:
    """Dotted document path of a Visage flag"""
    return f"flags.{DATA_NAMESPACE}.{key}"


def read_flags(document: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """The Visage flag block of an entity document ({} when absent)"""
    flags = get_property(document or {}, f"flags.{DATA_NAMESPACE}")
    return flags if isinstance(flags, Mapping) else {}


class LayerStack:
    """Ordered layers of one entity with list-like access

    Provides:
    - Iteration, indexing and len
    - Identity slot management (index 0)
    - Id-based lookup and in-place replacement
    - Conversion to and from the entity's flag block
    """

    def __init__(self, layers: Optional[List[Layer]] = None):
        self._layers: List[Layer] = []
        for layer in layers or ():
            if not isinstance(layer, Layer):
                raise TypeError(f"Expected Layer, got {type(layer)}")
            self._layers.append(layer)
        self._normalize()

    def __len__(self) -> int:
        return len(self._layers)

    def __getitem__(self, index: int) -> Layer:
        return self._layers[index]

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    def __contains__(self, layer_id: str) -> bool:
        return self.index_of(layer_id) >= 0

    def __repr__(self) -> str:
        return f"LayerStack({[layer.id for layer in self._layers]})"

    # ========================================
    # Lookup
    # ========================================

    def index_of(self, layer_id: str) -> int:
        for index, layer in enumerate(self._layers):
            if layer.id == layer_id:
                return index
        return -1

    def get_by_id(self, layer_id: str) -> Optional[Layer]:
        """Find layer by id

        Returns:
            Layer if found, None otherwise
        """
        index = self.index_of(layer_id)
        return self._layers[index] if index >= 0 else None

    @property
    def identity(self) -> Optional[Layer]:
        """The identity layer, if the stack has one"""
        if self._layers and self._layers[0].is_identity:
            return self._layers[0]
        return None

    @property
    def identity_id(self) -> Optional[str]:
        identity = self.identity
        return identity.id if identity else None

    @property
    def overlays(self) -> List[Layer]:
        return [layer for layer in self._layers if not layer.is_identity]

    @property
    def ids(self) -> List[str]:
        return [layer.id for layer in self._layers]

    # ========================================
    # Mutation
    # ========================================

    def set_identity(self, layer: Layer) -> List[Layer]:
        """Install layer as the identity, at index 0

        The previous identity layer and any layer sharing the new id are
        taken out of the stack. Overlays are untouched.

        Returns:
            The displaced layers, so their effects can be stopped
        """
        if layer.kind != KIND_IDENTITY:
            layer = layer.with_kind(KIND_IDENTITY)

        displaced = [
            existing for existing in self._layers
            if existing.is_identity or existing.id == layer.id
        ]
        self._layers = [
            existing for existing in self._layers
            if not (existing.is_identity or existing.id == layer.id)
        ]
        self._layers.insert(0, layer)
        return displaced

    def add_overlay(self, layer: Layer) -> Optional[Layer]:
        """Append layer as an overlay, or replace the layer with its id in place

        Returns:
            The replaced layer, or None if the id was new
        """
        if layer.kind != KIND_OVERLAY:
            layer = layer.with_kind(KIND_OVERLAY)

        index = self.index_of(layer.id)
        if index < 0:
            self._layers.append(layer)
            return None

        replaced = self._layers[index]
        self._layers[index] = layer
        return replaced

    def remove(self, layer_id: str) -> Optional[Layer]:
        """Remove the layer with this id

        Returns:
            The removed layer, or None if absent
        """
        index = self.index_of(layer_id)
        if index < 0:
            return None
        return self._layers.pop(index)

    def clear(self) -> List[Layer]:
        """Remove all layers and return them"""
        removed = self._layers
        self._layers = []
        return removed

    def copy(self) -> 'LayerStack':
        # Layers are immutable, a shallow copy is independent
        return LayerStack(list(self._layers))

    def _normalize(self):
        """Enforce unique ids and a single identity at index 0"""
        seen = set()
        unique = []
        for layer in self._layers:
            if layer.id in seen:
                logger.warning(f"Dropping duplicate stack entry '{layer.id}'")
                continue
            seen.add(layer.id)
            unique.append(layer)

        identity = next((layer for layer in unique if layer.is_identity), None)
        ordered = [identity] if identity else []
        for layer in unique:
            if layer is identity:
                continue
            if layer.is_identity:
                logger.warning(f"Demoting extra identity layer '{layer.id}' to overlay")
                layer = layer.with_kind(KIND_OVERLAY)
            ordered.append(layer)
        self._layers = ordered

    # ========================================
    # Persistence shape
    # ========================================

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> 'LayerStack':
        """Read the stack from an entity document

        Falls back to the legacy ``stack`` flag. The stored ``identity``
        id marks which entry holds the identity slot.
        """
        flags = read_flags(document)
        entries = flags.get(FLAG_STACK)
        if not entries:
            entries = flags.get(FLAG_LEGACY_STACK)
        if not isinstance(entries, list):
            entries = []

        layers = layers_from_dicts(entries)
        identity_id = flags.get(FLAG_IDENTITY)
        if identity_id:
            layers = [
                layer.with_kind(KIND_IDENTITY) if layer.id == identity_id
                else layer.with_kind(KIND_OVERLAY)
                for layer in layers
            ]
        return cls(layers)

    def to_flags(self) -> Dict[str, Any]:
        """Flag values describing this stack"""
        return {
            FLAG_STACK: [layer.to_dict() for layer in self._layers],
            FLAG_IDENTITY: self.identity_id,
        }
