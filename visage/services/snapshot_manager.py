"""Captures and stores the entity's true form."""

import logging
from typing import Any, Mapping, Optional

from visage.constants import FLAG_SNAPSHOT, UPDATE_OPTION
from visage.models.snapshot import Snapshot
from visage.models.stack import flag_path, read_flags
from visage.services.persistence import DocumentStore

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Reads, captures and clears the persisted snapshot of an entity

    capture() and get() are pure reads of a document the caller already
    holds; only clear() touches the store.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def capture(self, document: Mapping[str, Any]) -> Snapshot:
        """Extract the current visual state of an entity; never fails"""
        return Snapshot.from_document(document)

    def get(self, document: Mapping[str, Any]) -> Optional[Snapshot]:
        """The persisted snapshot, or None when no stack is or was active"""
        stored = read_flags(document).get(FLAG_SNAPSHOT)
        if not isinstance(stored, Mapping):
            return None
        return Snapshot.from_document(stored)

    def get_or_capture(self, document: Mapping[str, Any]) -> Snapshot:
        snapshot = self.get(document)
        return snapshot if snapshot is not None else self.capture(document)

    async def clear(self, entity_id: str):
        """Delete the persisted snapshot; only valid once the stack is empty"""
        logger.debug(f"Clearing snapshot of '{entity_id}'")
        await self.store.clear_field(entity_id, flag_path(FLAG_SNAPSHOT),
                                     options={UPDATE_OPTION: True})
