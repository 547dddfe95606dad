"""
Visage - External Edit Reconciler

When someone edits a masked entity directly (renames it, swaps its image),
the edit is meant for the entity's true form, not for the masked look. The
reconciler folds such edits into the snapshot and recomposes, so overlays
keep rendering on top of the edited base and a later revert reveals the
edit.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from visage.constants import UPDATE_OPTION, VISUAL_KEYS, BYPASS_KEYS
from visage.models.snapshot import Snapshot
from visage.models.stack import LayerStack
from visage.services.compositor import Compositor
from visage.services.persistence import DocumentStore
from visage.utils.objects import expand, flatten, matches_any, merge_object

logger = logging.getLogger(__name__)


class ExternalEditReconciler:
    """Redirects direct visual edits of masked entities into their snapshot

    Args:
        store: Store whose edit notifications are observed
        compositor: Compositor used to recompose
        user_id: The local user; only edits this user made are reconciled
    """

    def __init__(self, store: DocumentStore, compositor: Compositor,
                 user_id: Optional[str] = None):
        self.store = store
        self.compositor = compositor
        self.user_id = user_id if user_id is not None else store.user_id
        self._attached = False

    def attach(self):
        """Start listening to the store's edit notifications"""
        if not self._attached:
            self.store.add_listener(self.handle_edit)
            self._attached = True

    def detach(self):
        if self._attached:
            self.store.remove_listener(self.handle_edit)
            self._attached = False

    @staticmethod
    def is_relevant(changes: Mapping[str, Any]) -> bool:
        """True if an edit touches tracked visual properties and no bypass key"""
        keys = list(flatten(changes).keys())
        if matches_any(keys, BYPASS_KEYS):
            return False
        return matches_any(keys, VISUAL_KEYS)

    async def handle_edit(self, entity_id: str, changes: Dict[str, Any],
                          options: Optional[Dict[str, Any]] = None,
                          originator: Optional[str] = None) -> bool:
        """Handle one edit notification

        Returns:
            True if the edit was folded into the snapshot
        """
        options = options or {}
        if options.get(UPDATE_OPTION):
            return False
        if originator != self.user_id:
            return False
        if not self.is_relevant(changes):
            return False

        document = await self.store.read(entity_id)
        stack = LayerStack.from_document(document)
        if not len(stack):
            return False

        base = self.compositor.snapshots.get(document)
        if base is None:
            base = self.compositor.snapshots.capture(document)

        merged = merge_object(base.to_document(), expand(changes))
        # Re-extract so only tracked visual properties survive
        snapshot = Snapshot.from_document(merged)

        logger.debug(f"Folding direct edit of '{entity_id}' into its snapshot")
        await self.compositor.compose(entity_id, stack, snapshot_override=snapshot)
        return True
