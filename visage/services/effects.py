"""
Visage - Effect Lifecycle Manager

Starts and stops the visual and audio processes attached to layers.

Every process is tagged by its layer slot: "visage-base" for the identity
layer, "visage-mask-<id>" for overlays. Processes started by one apply()
call share a single _ProcessGroup that is registered for its tag before
any asynchronous start begins. A start that resolves after its group was
superseded (by a newer apply or a remove) is stopped on arrival instead of
joining the live set, so rapid apply/remove sequences never leave
playback nobody can stop.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from visage.constants import TAG_PREFIX
from visage.models.layer import EffectSpec, Layer, effect_tag
from visage.models.stack import LayerStack
from visage.utils.config import VisageSettings
from visage.utils.logger import report_error
from visage.utils.path_resolver import AssetPathResolver

logger = logging.getLogger(__name__)


# ======================================================================
# BACKENDS
# ======================================================================

class Sound(ABC):
    """A playing audio instance returned by an AudioBackend

    Implementations expose a writable ``volume`` attribute.
    """
    volume: float = 0.0

    @property
    @abstractmethod
    def playing(self) -> bool:
        """True while the sound is audible"""

    @abstractmethod
    def stop(self):
        """Stop playback immediately"""

    @abstractmethod
    def on_end(self, callback: Callable[[], None]):
        """Register a callback for when a one-shot sound finishes"""


class AudioBackend(ABC):
    """Plays audio files"""

    @abstractmethod
    async def play(self, path: str, volume: float, loop: bool) -> Sound:
        """Start playing path; resolves once the sound is loaded"""


class VisualBackend(ABC):
    """Plays visual effects attached to an entity"""

    @abstractmethod
    async def play(self, entity_id: str, tag: str, effect: EffectSpec, path: str,
                   delay_ms: float, duration_ms: Optional[int]) -> Any:
        """Start a visual effect

        Args:
            duration_ms: Run time for looping effects, None to play once

        Returns:
            A handle accepted by stop()
        """

    @abstractmethod
    async def stop(self, handle: Any):
        """Stop one visual effect"""

    @abstractmethod
    async def end(self, entity_id: str, tag: str):
        """Stop every visual effect with this tag on the entity"""

    @abstractmethod
    async def tags(self, entity_id: str) -> List[str]:
        """Tags of the visual effects currently running on the entity"""


# ======================================================================
# PROCESS TRACKING
# ======================================================================

class _ProcessGroup:
    """Processes started for one (entity, tag) by one apply() call"""

    def __init__(self, key: Tuple[str, str]):
        self.key = key
        self.sounds: List[Tuple[Sound, float]] = []
        self.visuals: List[Any] = []
        self.delayed: Set[asyncio.Task] = set()
        self.pending = 0
        self.closed = False

    def __len__(self) -> int:
        return len(self.sounds) + len(self.visuals)

    def discard(self, sound: Sound):
        self.sounds = [(s, fade) for s, fade in self.sounds if s is not sound]


class EffectLifecycleManager:
    """Keeps running effect processes in line with entity layer stacks

    Args:
        visual: Visual backend; visual effects are skipped without one
        audio: Audio backend; audio effects are skipped without one
        resolver: Resolves effect asset paths and database keys
        settings: Playback defaults (loop duration, volume, fade step)
    """

    def __init__(self, visual: Optional[VisualBackend] = None,
                 audio: Optional[AudioBackend] = None,
                 resolver: Optional[AssetPathResolver] = None,
                 settings: Optional[VisageSettings] = None):
        self.visual = visual
        self.audio = audio
        self.resolver = resolver or AssetPathResolver()
        self.settings = settings or VisageSettings()
        self._groups: Dict[Tuple[str, str], _ProcessGroup] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ========================================
    # Public API
    # ========================================

    async def apply(self, entity_id: str, layer: Layer, is_identity: bool,
                    is_restore: bool = False):
        """Start the layer's effects, replacing whatever its tag was running

        Args:
            entity_id: Target entity
            layer: Layer whose effects to start
            is_identity: Whether the layer occupies the identity slot
            is_restore: Skip one-shot effects (scene reload)
        """
        tag = effect_tag(layer.id, is_identity)
        effects = layer.active_effects()
        if is_restore:
            effects = [e for e in effects if e.loop]

        # Claim the tag before the first await so a concurrent remove sees it
        self._release((entity_id, tag), fade=True)
        group = self._register((entity_id, tag)) if effects else None

        await self._end_visuals(entity_id, tag)
        if group is None or not self._owns(group):
            return

        # Zero anchor: the most negative delay starts at 0
        offset_ms = abs(min([0.0] + [e.delay for e in effects])) * 1000

        visuals = [e for e in effects if e.is_visual]
        audios = [e for e in effects if e.is_audio]
        if visuals and self.visual is not None:
            await self._play_visuals(entity_id, tag, group, visuals, offset_ms)
        if audios and self.audio is not None and self._owns(group):
            for effect in audios:
                self._play_audio(group, effect, offset_ms)
        self._settle(group)

    async def remove(self, entity_id: str, layer_id: str, is_identity: bool):
        """Stop every process tagged for this layer slot"""
        tag = effect_tag(layer_id, is_identity)
        self._release((entity_id, tag), fade=True)
        await self._end_visuals(entity_id, tag)

    async def revert(self, entity_id: str):
        """Stop every Visage process on the entity, regardless of layer"""
        for key in [key for key in self._groups if key[0] == entity_id]:
            self._close(self._groups.pop(key), fade=False)

        if self.visual is not None:
            try:
                for tag in await self.visual.tags(entity_id):
                    if tag.startswith(TAG_PREFIX):
                        await self.visual.end(entity_id, tag)
            except Exception as e:
                logger.warning(f"Error ending visual effects on '{entity_id}': {e}")

    async def restore(self, entity_id: str, stack: LayerStack):
        """Re-create the effects of a persisted stack after a reload

        Everything is stopped first. One-shot effects are not replayed.
        """
        await self.revert(entity_id)

        identity = stack.identity
        if identity is not None:
            try:
                await self.apply(entity_id, identity, True, is_restore=True)
            except Exception as e:
                report_error(e, f"Restoring identity effects of '{entity_id}' failed",
                             title="Effect Error")

        for layer in stack.overlays:
            try:
                await self.apply(entity_id, layer, False, is_restore=True)
            except Exception as e:
                report_error(e, f"Restoring effects of mask '{layer.id}' failed",
                             title="Effect Error")

    def stop_all_audio(self):
        """Silence every tracked sound on every entity (scene change)"""
        for key in list(self._groups):
            self._close(self._groups.pop(key), fade=False)
        logger.debug("Stopped all Visage audio")

    def running(self, entity_id: str) -> Dict[str, int]:
        """Tag -> number of live processes tracked for the entity"""
        return {
            tag: len(group)
            for (owner, tag), group in self._groups.items()
            if owner == entity_id and len(group)
        }

    async def drain(self):
        """Wait for pending starts and fades to settle"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========================================
    # Group bookkeeping
    # ========================================

    def _register(self, key: Tuple[str, str]) -> _ProcessGroup:
        previous = self._groups.get(key)
        if previous is not None:
            self._close(previous, fade=False)
        group = _ProcessGroup(key)
        self._groups[key] = group
        return group

    def _release(self, key: Tuple[str, str], fade: bool):
        group = self._groups.pop(key, None)
        if group is not None:
            self._close(group, fade=fade)

    def _owns(self, group: _ProcessGroup) -> bool:
        return not group.closed and self._groups.get(group.key) is group

    def _settle(self, group: _ProcessGroup):
        """Forget a group left with nothing running and nothing starting"""
        if self._owns(group) and not len(group) and not group.pending:
            del self._groups[group.key]
            group.closed = True

    async def _end_visuals(self, entity_id: str, tag: str):
        if self.visual is None:
            return
        try:
            await self.visual.end(entity_id, tag)
        except Exception as e:
            logger.warning(f"Error ending visual effects '{tag}' on '{entity_id}': {e}")

    def _close(self, group: _ProcessGroup, fade: bool):
        """Stop the group's sounds and pending starts

        Visual handles are ended by tag through the backend; a closed group
        only drops its references to them.
        """
        group.closed = True
        for task in list(group.delayed):
            task.cancel()
        group.delayed.clear()

        for sound, fade_out in group.sounds:
            if fade and fade_out > 0 and sound.playing:
                self._spawn(self._fade_and_stop(sound, fade_out))
            else:
                self._silence(sound)
        group.sounds = []
        group.visuals = []

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ========================================
    # Visuals
    # ========================================

    async def _play_visuals(self, entity_id: str, tag: str, group: _ProcessGroup,
                            effects: List[EffectSpec], offset_ms: float):
        for effect in effects:
            if not self._owns(group):
                return
            path = await self.resolver.resolve_effect(effect.asset_path)
            if not path:
                logger.warning(f"Skipping visual effect '{effect.id}': "
                               f"unresolvable path {effect.asset_path!r}")
                continue

            duration = self.settings.loop_duration_ms if effect.loop else None
            delay_ms = effect.delay * 1000 + offset_ms
            try:
                handle = await self.visual.play(entity_id, tag, effect, path, delay_ms, duration)
            except Exception as e:
                report_error(e, f"Visual effect '{effect.id}' failed to start",
                             title="Effect Error")
                continue

            if not self._owns(group):
                logger.debug(f"Discarding late visual '{effect.id}' for superseded '{tag}'")
                await self.visual.stop(handle)
                continue
            group.visuals.append(handle)

    # ========================================
    # Audio
    # ========================================

    def _play_audio(self, group: _ProcessGroup, effect: EffectSpec, offset_ms: float):
        delay_ms = effect.delay * 1000 + offset_ms
        group.pending += 1
        task = self._spawn(self._start_sound(group, effect, delay_ms))
        if delay_ms > 0:
            group.delayed.add(task)

    async def _start_sound(self, group: _ProcessGroup, effect: EffectSpec, delay_ms: float):
        try:
            await self._load_sound(group, effect, delay_ms)
        finally:
            group.pending -= 1
            self._settle(group)

    async def _load_sound(self, group: _ProcessGroup, effect: EffectSpec, delay_ms: float):
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
            group.delayed.discard(asyncio.current_task())
        if not self._owns(group):
            return

        path = await self.resolver.resolve_effect(effect.asset_path)
        if not path:
            logger.warning(f"Skipping audio effect '{effect.id}': "
                           f"unresolvable path {effect.asset_path!r}")
            return

        volume = effect.opacity if effect.opacity is not None else self.settings.default_audio_volume
        try:
            sound = await self.audio.play(path, 0.0 if effect.fade_in > 0 else volume, effect.loop)
        except Exception as e:
            report_error(e, f"Audio effect '{effect.id}' failed to start", title="Effect Error")
            return

        # The group may have been superseded while the sound was loading
        if not self._owns(group):
            logger.debug(f"Stopping late audio '{effect.id}' for superseded '{group.key[1]}'")
            self._silence(sound)
            return

        group.sounds.append((sound, effect.fade_out))
        if effect.fade_in > 0:
            self._spawn(self._fade(sound, 0.0, volume, effect.fade_in))
        if not effect.loop:
            sound.on_end(lambda: self._forget_sound(group, sound))

    def _forget_sound(self, group: _ProcessGroup, sound: Sound):
        group.discard(sound)
        self._settle(group)

    @staticmethod
    def _silence(sound: Sound):
        try:
            sound.volume = 0.0
            sound.stop()
        except Exception as e:
            logger.warning(f"Error stopping sound: {e}")

    async def _fade(self, sound: Sound, start: float, end: float, duration_ms: float):
        """Ramp sound.volume linearly from start to end"""
        if duration_ms <= 0:
            sound.volume = end
            return
        loop = asyncio.get_running_loop()
        started = loop.time()
        step = self.settings.fade_step_ms / 1000
        while True:
            progress = min(1.0, (loop.time() - started) * 1000 / duration_ms)
            sound.volume = start + (end - start) * progress
            if progress >= 1.0:
                return
            await asyncio.sleep(step)

    async def _fade_and_stop(self, sound: Sound, duration_ms: float):
        await self._fade(sound, sound.volume, 0.0, duration_ms)
        sound.stop()
