"""
Shared fixtures for Visage tests.

Provides a sample entity document, an in-memory store, a mask library with
identity/overlay/effect masks, and recording stand-ins for the visual and
audio backends.
"""
import asyncio
import itertools
from copy import deepcopy

import pytest

from visage import create_visage
from visage.services.effects import AudioBackend, Sound, VisualBackend
from visage.services.mask_library import MaskLibrary
from visage.services.persistence import InMemoryDocumentStore
from visage.utils import logger as visage_logger
from visage.utils.config import VisageSettings


# ── Sample entity ───────────────────────────────────────────────────────

ENTITY_ID = "token-1"
OWNER_ID = "actor-1"

BASE_DOCUMENT = {
    'name': "Goblin",
    'actorId': OWNER_ID,
    'texture': {'src': "tokens/goblin.webp", 'scaleX': 1.0, 'scaleY': 1.0},
    'width': 1.0,
    'height': 1.0,
    'disposition': -1,
    'ring': {'enabled': False},
    'hidden': False,
}


# ── Sample masks ────────────────────────────────────────────────────────

GLOBAL_MASKS = [
    {
        'id': "bear-form",
        'label': "Bear Form",
        'mode': "identity",
        'changes': {'name': "Bear", 'texture': {'src': "tokens/bear.webp"}, 'scale': 1.5},
    },
    {
        'id': "mirror-x",
        'label': "Mirror",
        'mode': "overlay",
        'changes': {'mirrorX': True},
    },
    {
        'id': "mirror-y",
        'label': "Upside Down",
        'mode': "overlay",
        'changes': {'mirrorY': True},
    },
    {
        'id': "giant",
        'label': "Giant",
        'mode': "overlay",
        'changes': {'scale': 2.0, 'width': 2.0, 'height': 2.0},
    },
    {
        'id': "red-ring",
        'label': "Red Ring",
        'mode': "overlay",
        'changes': {'ring': {'enabled': True, 'colors': {'ring': "#FF0000"}, 'effects': 2}},
    },
    {
        'id': "fire-aura",
        'label': "Fire Aura",
        'mode': "overlay",
        'changes': {'displayName': 30},
        'effects': [
            {'id': "flames", 'type': "visual", 'path': "fx/flames.webm", 'loop': True},
            {'id': "crackle", 'type': "audio", 'path': "sfx/crackle.ogg", 'loop': True},
        ],
    },
]

LOCAL_MASKS = [
    {
        'id': "wolf-form",
        'label': "Wolf Form",
        'changes': {'name': "Wolf", 'texture': {'src': "tokens/wolf.webp"}},
    },
]


# ══════════════════════════════════════════════════════════════════════════
# Backend stand-ins
# ══════════════════════════════════════════════════════════════════════════

class FakeSound(Sound):
    """Sound that records volume changes and stop calls"""

    def __init__(self, path, volume, loop):
        self.path = path
        self.volume = volume
        self.loop = loop
        self.stopped = False
        self._on_end = []

    @property
    def playing(self):
        return not self.stopped

    def stop(self):
        self.stopped = True

    def on_end(self, callback):
        self._on_end.append(callback)

    def finish(self):
        """Simulate a one-shot sound reaching its end"""
        self.stopped = True
        for callback in self._on_end:
            callback()


class FakeAudioBackend(AudioBackend):
    """Audio backend whose loads can be held back to simulate slow files"""

    def __init__(self, fail=False):
        self.fail = fail
        self.sounds = []
        self._gate = None
        self._entered = None

    def hold(self):
        """Make every following play() wait until release()"""
        self._gate = asyncio.Event()
        self._entered = asyncio.Event()

    def release(self):
        self._gate.set()

    async def wait_started(self):
        await self._entered.wait()

    async def play(self, path, volume, loop):
        if self.fail:
            raise RuntimeError(f"Cannot play {path}")
        sound = FakeSound(path, volume, loop)
        self.sounds.append(sound)
        if self._gate is not None:
            self._entered.set()
            await self._gate.wait()
        return sound

    @property
    def audible(self):
        return [sound for sound in self.sounds if sound.playing]


class FakeVisualBackend(VisualBackend):
    """Visual backend tracking live effects per (entity, tag)"""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self.live = {}
        self._ids = itertools.count(1)

    async def play(self, entity_id, tag, effect, path, delay_ms, duration_ms):
        if self.fail:
            raise RuntimeError(f"Cannot play {path}")
        handle = (entity_id, tag, next(self._ids))
        self.calls.append({
            'entity_id': entity_id, 'tag': tag, 'effect': effect.id,
            'path': path, 'delay_ms': delay_ms, 'duration_ms': duration_ms,
        })
        self.live.setdefault(entity_id, {}).setdefault(tag, []).append(handle)
        return handle

    async def stop(self, handle):
        entity_id, tag, _ = handle
        handles = self.live.get(entity_id, {}).get(tag, [])
        if handle in handles:
            handles.remove(handle)
        if not handles:
            self.live.get(entity_id, {}).pop(tag, None)

    async def end(self, entity_id, tag):
        self.live.get(entity_id, {}).pop(tag, None)

    async def tags(self, entity_id):
        return list(self.live.get(entity_id, {}))


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def release_mode():
    """Run every test in release mode with no notifier installed"""
    visage_logger.set_debug_mode(False)
    visage_logger.set_notifier(None)
    yield
    visage_logger.set_debug_mode(False)
    visage_logger.set_notifier(None)


@pytest.fixture
def base_document():
    """Fresh copy of the sample entity document"""
    return deepcopy(BASE_DOCUMENT)


@pytest.fixture
def store(base_document):
    """Store holding the sample entity, written by user 'gm'"""
    return InMemoryDocumentStore({ENTITY_ID: base_document}, user_id="gm")


@pytest.fixture
def settings():
    return VisageSettings(fade_step_ms=5)


@pytest.fixture
def library(settings):
    """Library with the sample global masks and one local mask of OWNER_ID"""
    clock = itertools.count(1000)
    library = MaskLibrary(settings=settings, clock=lambda: next(clock))
    for payload in GLOBAL_MASKS:
        library.save(payload)
    for payload in LOCAL_MASKS:
        library.save(payload, owner_id=OWNER_ID)
    return library


@pytest.fixture
def audio():
    return FakeAudioBackend()


@pytest.fixture
def visual():
    return FakeVisualBackend()


@pytest.fixture
def visage(store, library, visual, audio, settings):
    """Fully wired controller with effect backends and edit reconciliation"""
    return create_visage(store, library, visual=visual, audio=audio, settings=settings)


@pytest.fixture
def effects(visage):
    return visage.effects


@pytest.fixture
def make_visage(library, settings):
    """Factory for independent controllers, each over a fresh sample store

    Pass ``failing=True`` to get effect backends that raise on every start.
    """
    def factory(failing=False):
        store = InMemoryDocumentStore({ENTITY_ID: deepcopy(BASE_DOCUMENT)}, user_id="gm")
        return create_visage(
            store, library,
            visual=FakeVisualBackend(fail=failing),
            audio=FakeAudioBackend(fail=failing),
            settings=settings,
        )
    return factory
