"""
Document store interface used by the Visage services.

Entities are plain nested dicts. The services only ever read a whole
document and write a partial update; how a host stores documents is up to
the DocumentStore implementation. InMemoryDocumentStore is a complete
implementation used by tests and by headless tooling.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from visage.errors import EntityNotFoundError, PersistenceError
from visage.utils.objects import delete_property, merge_object

logger = logging.getLogger(__name__)

# listener(entity_id, changes, options, user_id); may be a coroutine function
EditListener = Callable[[str, Dict[str, Any], Dict[str, Any], Optional[str]], Any]


class DocumentStore(ABC):
    """Abstract document store with edit notifications

    Args:
        user_id: Id of the local user; used as the originator of writes
            that do not name one
    """

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        self._listeners: List[EditListener] = []

    @abstractmethod
    async def read(self, entity_id: str) -> Dict[str, Any]:
        """Return a copy of the entity document

        Raises:
            EntityNotFoundError: If the entity does not exist
        """

    @abstractmethod
    async def write(self, entity_id: str, changes: Mapping[str, Any],
                    unset: Iterable[str] = (), options: Optional[Dict[str, Any]] = None,
                    user_id: Optional[str] = None) -> Dict[str, Any]:
        """Atomically update an entity document

        Paths in unset are removed first, then changes (dotted keys allowed)
        are deep-merged, so a path listed in both is replaced wholesale.
        Either the whole update is committed or nothing is.

        Returns:
            A copy of the updated document

        Raises:
            EntityNotFoundError: If the entity does not exist
            PersistenceError: If the update cannot be committed
        """

    async def clear_field(self, entity_id: str, path: str,
                          options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Delete one field (distinct from writing None into it)"""
        return await self.write(entity_id, {}, unset=(path,), options=options)

    # ========================================
    # Edit notifications
    # ========================================

    def add_listener(self, callback: EditListener):
        """Add a listener notified after every committed write"""
        self._listeners.append(callback)

    def remove_listener(self, callback: EditListener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def _notify_listeners(self, entity_id: str, changes: Dict[str, Any],
                                options: Dict[str, Any], user_id: Optional[str]):
        """Notify listeners in registration order

        A failing listener is logged and does not affect the write or the
        remaining listeners.
        """
        for callback in list(self._listeners):
            try:
                result = callback(entity_id, deepcopy(changes), dict(options), user_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error notifying edit listener for '{entity_id}': {e}", exc_info=True)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store

    Every committed write is recorded in ``writes`` as
    (entity_id, changes, unset, options) for inspection.
    """

    def __init__(self, documents: Optional[Mapping[str, Mapping[str, Any]]] = None,
                 user_id: Optional[str] = None):
        super().__init__(user_id)
        self._documents: Dict[str, Dict[str, Any]] = {
            entity_id: deepcopy(dict(doc)) for entity_id, doc in (documents or {}).items()
        }
        self.writes: List[tuple] = []
        self._failures: List[Exception] = []

    def add(self, entity_id: str, document: Mapping[str, Any]):
        """Create or replace a document without notifying listeners"""
        self._documents[entity_id] = deepcopy(dict(document))

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._documents

    def fail_next_write(self, error: Optional[Exception] = None):
        """Make the next write raise without committing anything"""
        self._failures.append(error or PersistenceError("Simulated write failure"))

    async def read(self, entity_id: str) -> Dict[str, Any]:
        try:
            return deepcopy(self._documents[entity_id])
        except KeyError:
            raise EntityNotFoundError(entity_id) from None

    async def write(self, entity_id, changes, unset=(), options=None, user_id=None):
        if entity_id not in self._documents:
            raise EntityNotFoundError(entity_id)
        if self._failures:
            raise self._failures.pop(0)

        options = dict(options or {})
        unset = tuple(unset)
        updated = deepcopy(self._documents[entity_id])
        for path in unset:
            delete_property(updated, path)
        updated = merge_object(updated, changes, inplace=True)

        # Commit in one assignment
        self._documents[entity_id] = updated
        self.writes.append((entity_id, deepcopy(dict(changes)), unset, options))
        logger.debug(f"Wrote '{entity_id}': {len(changes)} change(s), {len(unset)} unset")

        await self._notify_listeners(entity_id, dict(changes), options,
                                     user_id if user_id is not None else self.user_id)
        return deepcopy(updated)
