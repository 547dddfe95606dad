"""
Visage - Compositor

Merges an entity's layer stack over its snapshot and persists the result.

Scale is handled as three orthogonal axes (magnitude, mirror X, mirror Y)
for the whole merge and only re-baked into signed scaleX/scaleY when the
result is written. That lets one layer flip an entity while another
resizes it, in any order.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from visage.constants import (
    FLAG_STACK, FLAG_LEGACY_STACK, FLAG_IDENTITY, FLAG_SNAPSHOT, UPDATE_OPTION,
)
from visage.models.layer import Layer
from visage.models.snapshot import Snapshot
from visage.models.stack import LayerStack, flag_path, read_flags
from visage.models.transform import decode_signed
from visage.services.persistence import DocumentStore
from visage.services.snapshot_manager import SnapshotManager

logger = logging.getLogger(__name__)

# Flags removed when an entity goes back to its true form
STACK_FLAGS = (FLAG_STACK, FLAG_LEGACY_STACK, FLAG_IDENTITY, FLAG_SNAPSHOT)


def compose_snapshot(base: Snapshot, layers: Iterable[Layer]) -> Snapshot:
    """Merge layers, bottom first, over a copy of base

    Args:
        base: True form to start from (not modified)
        layers: Layers in stack order

    Returns:
        The composed visual state
    """
    result = base.copy()
    scale = result.scale

    for layer in layers:
        if layer.overrides('image_source'):
            result.image_source = layer.get('image_source')

        # Atomic magnitude wins; signed per-axis scale is the legacy fallback
        if layer.overrides('scale'):
            scale.set_magnitude(layer.get('scale'))
        else:
            if layer.overrides('scale_x'):
                scale.magnitude_x, scale.mirror_x = decode_signed(layer.get('scale_x'))
            if layer.overrides('scale_y'):
                scale.magnitude_y, scale.mirror_y = decode_signed(layer.get('scale_y'))

        # None means inherit: only concrete values touch an axis
        if layer.overrides('mirror_x'):
            scale.mirror_x = bool(layer.get('mirror_x'))
        if layer.overrides('mirror_y'):
            scale.mirror_y = bool(layer.get('mirror_y'))

        # Ring is replaced as one unit
        if layer.overrides('ring'):
            result.ring = layer.get('ring').collapsed()

        if layer.overrides('name'):
            result.name = layer.get('name')
        if layer.overrides('status_class'):
            result.status_class = layer.get('status_class')
        if layer.overrides('display_name'):
            result.display_name = layer.get('display_name')
        if layer.overrides('width'):
            result.width = layer.get('width')
        if layer.overrides('height'):
            result.height = layer.get('height')

    return result


class Compositor:
    """Composes and reverts entity appearance through a document store"""

    def __init__(self, store: DocumentStore, snapshots: Optional[SnapshotManager] = None):
        self.store = store
        self.snapshots = snapshots or SnapshotManager(store)

    async def compose(self, entity_id: str, stack: Optional[LayerStack] = None,
                      snapshot_override: Optional[Snapshot] = None) -> Dict[str, Any]:
        """Compose the stack over the entity's base and persist everything in one write

        Args:
            entity_id: Target entity
            stack: Stack to compose; defaults to the persisted stack
            snapshot_override: Base to use instead of the persisted snapshot

        Returns:
            The updated document

        Raises:
            EntityNotFoundError: If the entity does not exist
            PersistenceError: If the write fails (nothing is applied)
        """
        document = await self.store.read(entity_id)
        if stack is None:
            stack = LayerStack.from_document(document)

        if not len(stack) and snapshot_override is None:
            return await self._revert(entity_id, document)

        if snapshot_override is not None:
            base = snapshot_override
        else:
            base = self.snapshots.get_or_capture(document)

        final = compose_snapshot(base, stack)

        changes = final.to_document()
        unset: List[str] = ['ring', flag_path(FLAG_SNAPSHOT), flag_path(FLAG_STACK),
                            flag_path(FLAG_LEGACY_STACK)]
        if final.display_name is None:
            unset.append('displayName')

        for key, value in stack.to_flags().items():
            if value is None:
                unset.append(flag_path(key))
            else:
                changes[flag_path(key)] = value
        changes[flag_path(FLAG_SNAPSHOT)] = base.to_document()

        logger.debug(f"Composing '{entity_id}': {stack.ids}")
        return await self.store.write(entity_id, changes, unset=unset,
                                      options={UPDATE_OPTION: True})

    async def revert_to_default(self, entity_id: str) -> Dict[str, Any]:
        """Restore the persisted snapshot and drop all stack bookkeeping

        Without a snapshot only the bookkeeping flags are cleared.
        """
        document = await self.store.read(entity_id)
        return await self._revert(entity_id, document)

    async def _revert(self, entity_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
        unset = [flag_path(key) for key in STACK_FLAGS]
        snapshot = self.snapshots.get(document)

        if snapshot is None:
            if not read_flags(document):
                logger.debug(f"Nothing to revert on '{entity_id}'")
            return await self.store.write(entity_id, {}, unset=unset,
                                          options={UPDATE_OPTION: True})

        changes = snapshot.to_document()
        unset.append('ring')
        if snapshot.display_name is None:
            unset.append('displayName')

        logger.debug(f"Reverting '{entity_id}' to its snapshot")
        return await self.store.write(entity_id, changes, unset=unset,
                                      options={UPDATE_OPTION: True})
