"""
Visage - Stack Controller

Public API for applying, removing and reverting masks on entities.

Every operation re-reads the entity, edits a local copy of its stack and
hands it to the Compositor, which persists the stack, the composed
properties and the snapshot in one write. Effects are reconciled only
after that write succeeded; an effect that fails to start is reported
and never undoes the composition.
"""

import logging
from typing import Any, Dict, List, Optional

from visage.errors import MaskDataError, PersistenceError
from visage.models.layer import Layer
from visage.models.stack import LayerStack
from visage.services.compositor import Compositor
from visage.services.effects import EffectLifecycleManager
from visage.services.mask_library import MaskLibrary, owner_of
from visage.services.persistence import DocumentStore
from visage.services.snapshot_manager import SnapshotManager
from visage.utils.config import VisageSettings
from visage.utils.logger import loggerRaise, report_error

logger = logging.getLogger(__name__)


class Visage:
    """Applies masks from a library onto entities in a document store

    Args:
        store: Document store holding the entities
        library: Mask definition source
        effects: Effect lifecycle manager; effects are skipped without one
        settings: Shared runtime settings
    """

    def __init__(self, store: DocumentStore, library: MaskLibrary,
                 effects: Optional[EffectLifecycleManager] = None,
                 settings: Optional[VisageSettings] = None):
        self.store = store
        self.library = library
        self.settings = settings or VisageSettings()
        self.effects = effects
        self.snapshots = SnapshotManager(store)
        self.compositor = Compositor(store, self.snapshots)
        self.reconciler = None

    # ========================================
    # Core operations
    # ========================================

    async def apply(self, entity_id: str, mask_id: str, as_identity: Optional[bool] = None,
                    clear_stack: bool = False) -> bool:
        """Apply a mask to an entity

        Args:
            entity_id: Target entity
            mask_id: Mask to apply (owner's local masks first, then global)
            as_identity: Force identity (True) or overlay (False); by
                default the mask's own kind decides
            clear_stack: Discard every active layer first; the mask then
                becomes the sole identity layer

        Returns:
            True if applied, False if the mask id cannot be resolved

        Raises:
            EntityNotFoundError: If the entity does not exist
            PersistenceError: If the write fails; nothing is applied
        """
        document = await self.store.read(entity_id)
        data = self.library.resolve(mask_id, owner_of(document))
        if data is None:
            logger.warning(f"Mask '{mask_id}' not found for entity '{entity_id}'")
            return False

        try:
            layer = await self.library.to_layer(data)
        except MaskDataError as e:
            report_error(e, f"Mask '{mask_id}' could not be read", title="Mask Error")
            return False

        stack = LayerStack.from_document(document)
        if clear_stack:
            displaced = stack.clear()
            becomes_identity = True
        else:
            becomes_identity = layer.is_identity if as_identity is None else as_identity
            displaced = []

        if becomes_identity:
            displaced += stack.set_identity(layer)
        else:
            replaced = stack.add_overlay(layer)
            # A layer moving out of the identity slot must stop its identity effects
            if replaced is not None and replaced.is_identity:
                displaced.append(replaced)
        layer = stack.get_by_id(layer.id)

        await self._compose(entity_id, stack)
        logger.debug(f"Applied '{mask_id}' to '{entity_id}' as "
                     f"{'identity' if layer.is_identity else 'overlay'}")

        await self._stop_effects(entity_id, [
            old for old in displaced
            if not (old.id == layer.id and old.is_identity == layer.is_identity)
        ])
        await self._start_effects(entity_id, layer)
        return True

    async def remove(self, entity_id: str, layer_id: str) -> bool:
        """Remove one layer from an entity

        Removing the last layer reverts the entity to its true form.

        Returns:
            True if removed, False if no such layer was active
        """
        document = await self.store.read(entity_id)
        stack = LayerStack.from_document(document)
        removed = stack.remove(layer_id)
        if removed is None:
            return False

        await self._compose(entity_id, stack)
        logger.debug(f"Removed '{layer_id}' from '{entity_id}' ({len(stack)} left)")
        await self._stop_effects(entity_id, [removed])
        return True

    async def revert(self, entity_id: str) -> bool:
        """Drop every layer and restore the entity's true form

        Raises:
            EntityNotFoundError: If the entity does not exist
            PersistenceError: If the write fails
        """
        await self.store.read(entity_id)
        try:
            await self.compositor.revert_to_default(entity_id)
        except PersistenceError as e:
            loggerRaise(e, f"Reverting '{entity_id}' failed", title="Persistence Error")

        logger.debug(f"Reverted '{entity_id}'")
        if self.effects is not None:
            try:
                await self.effects.revert(entity_id)
            except Exception as e:
                report_error(e, f"Stopping effects on '{entity_id}' failed", title="Effect Error")
        return True

    async def is_active(self, entity_id: str, layer_id: str) -> bool:
        """True if a layer with this id is in the entity's stack"""
        document = await self.store.read(entity_id)
        return layer_id in LayerStack.from_document(document)

    async def get_available_masks(self, entity_id: str) -> List[Dict[str, Any]]:
        """Masks the entity can use: its owner's local ones, then global ones

        Each entry carries ``id``, ``label``, ``kind`` and ``source``.
        """
        document = await self.store.read(entity_id)
        return [
            {
                'id': entry['id'],
                'label': entry.get('label') or "Unknown",
                'kind': entry.get('mode') or self.library.default_kind(entry['source']),
                'source': entry['source'],
            }
            for entry in self.library.available(owner_of(document))
        ]

    async def get_default_mask(self, entity_id: str) -> Dict[str, Any]:
        """The entity's true form as a virtual mask with id 'default'"""
        document = await self.store.read(entity_id)
        return self.library.default_as_mask(document)

    async def restore_effects(self, entity_id: str):
        """Re-create effects for an entity's persisted stack (after a reload)"""
        if self.effects is None:
            return
        document = await self.store.read(entity_id)
        await self.effects.restore(entity_id, LayerStack.from_document(document))

    # ========================================
    # Helpers
    # ========================================

    async def _compose(self, entity_id: str, stack: LayerStack):
        try:
            await self.compositor.compose(entity_id, stack)
        except PersistenceError as e:
            loggerRaise(e, f"Saving the appearance of '{entity_id}' failed",
                        title="Persistence Error")

    async def _start_effects(self, entity_id: str, layer: Layer):
        if self.effects is None:
            return
        try:
            await self.effects.apply(entity_id, layer, layer.is_identity)
        except Exception as e:
            report_error(e, f"Effects of '{layer.id}' failed to start", title="Effect Error")

    async def _stop_effects(self, entity_id: str, layers: List[Layer]):
        if self.effects is None:
            return
        for layer in layers:
            try:
                await self.effects.remove(entity_id, layer.id, layer.is_identity)
            except Exception as e:
                report_error(e, f"Effects of '{layer.id}' failed to stop", title="Effect Error")
