"""
Visage - Mask Library

Stores mask definitions and turns them into Layers.

Two kinds of storage:
    - global: one shared library, soft-deleted entries go to the bin
    - local: per-owner libraries (owner = the entity's actor id)

Definitions are kept in their stored shape (camelCase changes, ``mode``)
and cleaned of legacy fields on save and on load. resolve() looks in the
owner's local library first, then in the global one.
"""

import json
import logging
import os
import random
import string
import time
from copy import deepcopy
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from visage.constants import (
    SOURCE_LOCAL, SOURCE_GLOBAL, KIND_IDENTITY, OWNER_KEY, FLAG_SNAPSHOT,
    MASK_ID_LENGTH, DEFAULT_MASK_ID, DEFAULT_MASK_LABEL, NEW_MASK_LABEL,
)
from visage.errors import MaskDataError
from visage.models.layer import Layer
from visage.models.migration import clean_mask_data, scrub_payload
from visage.models.ring import RingConfig
from visage.models.snapshot import Snapshot
from visage.models.stack import read_flags
from visage.utils.config import VisageSettings
from visage.utils.logger import loggerRaise
from visage.utils.path_resolver import AssetPathResolver

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


def owner_of(document: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Owner id whose local masks apply to an entity document"""
    return (document or {}).get(OWNER_KEY)


class MaskLibrary:
    """Global and per-owner mask definitions

    Args:
        resolver: Resolves wildcard image paths when building layers
        settings: Supplies the default kinds for local and global masks
        clock: Returns the current time in seconds (injectable for tests)
        rng: Random source for generated ids
    """

    def __init__(self, resolver: Optional[AssetPathResolver] = None,
                 settings: Optional[VisageSettings] = None,
                 clock: Optional[Callable[[], float]] = None,
                 rng: Optional[random.Random] = None):
        self.resolver = resolver or AssetPathResolver()
        self.settings = settings or VisageSettings()
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self._global: Dict[str, Dict[str, Any]] = {}
        self._local: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _now(self) -> int:
        return int(self._clock() * 1000)

    def _new_id(self) -> str:
        return ''.join(self._rng.choice(_ID_ALPHABET) for _ in range(MASK_ID_LENGTH))

    def default_kind(self, source: Optional[str]) -> str:
        if source == SOURCE_LOCAL:
            return self.settings.local_default_kind
        return self.settings.global_default_kind

    # ========================================
    # Queries
    # ========================================

    @property
    def globals(self) -> List[Dict[str, Any]]:
        """Active global masks, newest first"""
        entries = [deepcopy(v) for v in self._global.values() if not v.get('deleted')]
        return sorted(entries, key=lambda v: v.get('created') or 0, reverse=True)

    @property
    def bin(self) -> List[Dict[str, Any]]:
        """Soft-deleted global masks, most recently deleted first"""
        entries = [deepcopy(v) for v in self._global.values() if v.get('deleted')]
        return sorted(entries, key=lambda v: v.get('deletedAt') or 0, reverse=True)

    def get_global(self, mask_id: str) -> Optional[Dict[str, Any]]:
        data = self._global.get(mask_id)
        return deepcopy(data) if data else None

    def get_local(self, owner_id: Optional[str], include_deleted: bool = False) -> List[Dict[str, Any]]:
        """Local masks of an owner, sorted by label"""
        if not owner_id:
            return []
        results = []
        for key, data in self._local.get(owner_id, {}).items():
            if not data or not data.get('changes'):
                continue
            if data.get('deleted') and not include_deleted:
                continue
            entry = deepcopy(data)
            entry['id'] = data.get('id') or key
            entry['label'] = data.get('label') or data.get('name') or "Unknown"
            entry.setdefault('mode', self.default_kind(SOURCE_LOCAL))
            results.append(entry)
        return sorted(results, key=lambda v: v['label'].lower())

    def resolve(self, mask_id: str, owner_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find a mask by id, owner's local library first

        Returns:
            A copy of the definition with ``source`` set, or None
        """
        for entry in self.get_local(owner_id):
            if entry['id'] == mask_id:
                entry['source'] = SOURCE_LOCAL
                return entry

        data = self._global.get(mask_id)
        if data and not data.get('deleted'):
            entry = deepcopy(data)
            entry['source'] = SOURCE_GLOBAL
            return entry
        return None

    def available(self, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Every mask usable by an owner: local ones, then global ones"""
        local = [dict(entry, source=SOURCE_LOCAL) for entry in self.get_local(owner_id)]
        shared = [dict(entry, source=SOURCE_GLOBAL) for entry in self.globals]
        return local + shared

    # ========================================
    # Persistence (CRUD)
    # ========================================

    def save(self, payload: Mapping[str, Any], owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Create or update a mask

        Args:
            payload: Mask definition; a new id is generated when missing
            owner_id: Owner for a local mask, None for the global library

        Returns:
            The stored entry
        """
        source = SOURCE_LOCAL if owner_id else SOURCE_GLOBAL
        data = clean_mask_data(payload, self.default_kind(source))
        mask_id = data.get('id') or self._new_id()
        store = self._local.setdefault(owner_id, {}) if owner_id else self._global
        existing = store.get(mask_id)
        now = self._now()

        entry = {
            'id': mask_id,
            'label': data.get('label') or NEW_MASK_LABEL,
            'category': data.get('category') or "",
            'tags': list(data.get('tags') or []),
            'mode': data['mode'],
            'created': existing.get('created', now) if existing else now,
            'updated': now,
            'deleted': False,
            'deletedAt': None,
            'changes': deepcopy(data.get('changes') or {}),
            'effects': deepcopy(data.get('effects') or []),
            'automation': deepcopy(data.get('automation')),
        }
        scrub_payload(entry)
        store[mask_id] = entry
        logger.debug(f"Saved {source} mask '{mask_id}' ({entry['label']})")
        return deepcopy(entry)

    def _entry(self, mask_id: str, owner_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if owner_id:
            return self._local.get(owner_id, {}).get(mask_id)
        return self._global.get(mask_id)

    def delete(self, mask_id: str, owner_id: Optional[str] = None) -> bool:
        """Soft-delete a mask (moves a global mask to the bin)"""
        entry = self._entry(mask_id, owner_id)
        if entry is None:
            return False
        entry['deleted'] = True
        entry['deletedAt'] = self._now()
        entry['updated'] = entry['deletedAt']
        return True

    def restore(self, mask_id: str, owner_id: Optional[str] = None) -> bool:
        """Undo a soft delete"""
        entry = self._entry(mask_id, owner_id)
        if entry is None:
            return False
        entry['deleted'] = False
        entry.pop('deletedAt', None)
        entry['updated'] = self._now()
        return True

    def destroy(self, mask_id: str, owner_id: Optional[str] = None) -> bool:
        """Remove a mask permanently"""
        store = self._local.get(owner_id, {}) if owner_id else self._global
        return store.pop(mask_id, None) is not None

    def load(self, path: str):
        """Replace the library with the contents of a JSON file

        Entries are cleaned of legacy fields as they are read. A missing
        file leaves the library empty.
        """
        self._global = {}
        self._local = {}
        if not os.path.exists(path):
            return
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            loggerRaise(e, f"Error loading mask library from {path}")

        for mask_id, entry in (data.get('global') or {}).items():
            self._global[mask_id] = self._load_entry(mask_id, entry, SOURCE_GLOBAL)
        for owner_id, entries in (data.get('local') or {}).items():
            self._local[owner_id] = {
                mask_id: self._load_entry(mask_id, entry, SOURCE_LOCAL)
                for mask_id, entry in (entries or {}).items()
            }
        logger.debug(f"Loaded {len(self._global)} global mask(s) from {path}")

    def _load_entry(self, mask_id: str, entry: Any, source: str) -> Dict[str, Any]:
        try:
            cleaned = clean_mask_data(entry, self.default_kind(source))
        except MaskDataError as e:
            loggerRaise(e, f"Mask '{mask_id}' in library file is unreadable")
        cleaned.setdefault('id', mask_id)
        return cleaned

    def dump(self, path: str):
        """Write the whole library to a JSON file"""
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump({'global': self._global, 'local': self._local}, f, indent=2)
        except OSError as e:
            loggerRaise(e, f"Error saving mask library to {path}")

    # ========================================
    # Transformers
    # ========================================

    async def to_layer(self, data: Mapping[str, Any], source: Optional[str] = None) -> Layer:
        """Build a runtime layer from a stored definition

        Wildcard image and ring-subject paths are resolved here, so every
        application of a randomized mask may pick a different file. A
        path that resolves to nothing is kept as written.

        Raises:
            MaskDataError: If the definition is unusable
        """
        source = source or data.get('source')
        cleaned = clean_mask_data(data, self.default_kind(source))
        layer = Layer.from_dict(cleaned, source=source)

        changes = dict(layer.changes)
        image = changes.get('image_source')
        if image:
            changes['image_source'] = await self.resolver.resolve(image) or image

        ring = changes.get('ring')
        if isinstance(ring, RingConfig) and ring.subject_texture:
            resolved = await self.resolver.resolve(ring.subject_texture)
            if resolved:
                changes['ring'] = replace(ring, subject_texture=resolved)

        return replace(layer, changes=changes)

    def default_as_mask(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        """The entity's true form expressed as a virtual identity mask"""
        stored = read_flags(document).get(FLAG_SNAPSHOT)
        snapshot = Snapshot.from_document(stored if isinstance(stored, Mapping) else document)
        return {
            'id': DEFAULT_MASK_ID,
            'label': DEFAULT_MASK_LABEL,
            'category': "",
            'tags': [],
            'isDefault': True,
            'mode': KIND_IDENTITY,
            'changes': snapshot.to_document(),
        }
