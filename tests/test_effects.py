"""
Tests for the effect lifecycle manager.

Covers:
- Starting and stopping the effects of a layer slot
- Late starts after a remove are stopped on arrival (apply/remove races)
- Zero-anchored delays and cancelled delayed starts
- Restore replays looping effects only
- Audio fades, one-shot cleanup and stop_all_audio
- Effects follow a layer between the identity and overlay slots
"""
import asyncio

import pytest

from visage.constants import LOOP_DURATION_MS
from visage.models.layer import Layer
from visage.services.effects import EffectLifecycleManager

ENTITY_ID = "token-1"
FIRE_TAG = "visage-mask-fire-aura"


def fx_layer(layer_id, *effects, kind="overlay"):
    return Layer.from_dict({'id': layer_id, 'kind': kind, 'effects': list(effects)})


def slow_first_end(visual, yields=5):
    """Make the next end() call on the visual backend yield a few times"""
    original_end = visual.end
    remaining = [1]

    async def end(entity_id, tag):
        if remaining[0]:
            remaining[0] -= 1
            for _ in range(yields):
                await asyncio.sleep(0)
        await original_end(entity_id, tag)

    visual.end = end


# ══════════════════════════════════════════════════════════════════════════
# Start and stop
# ══════════════════════════════════════════════════════════════════════════

class TestStartStop:
    """Effects run exactly while their layer is active."""

    @pytest.mark.asyncio
    async def test_apply_starts_effects(self, visage, effects, visual, audio):
        await visage.apply(ENTITY_ID, "fire-aura")
        await effects.drain()

        assert len(visual.live[ENTITY_ID][FIRE_TAG]) == 1
        assert visual.calls[0]['path'] == "fx/flames.webm"
        assert visual.calls[0]['duration_ms'] == LOOP_DURATION_MS
        assert [sound.path for sound in audio.audible] == ["sfx/crackle.ogg"]
        assert audio.sounds[0].volume == 0.8
        assert effects.running(ENTITY_ID) == {FIRE_TAG: 2}

    @pytest.mark.asyncio
    async def test_remove_stops_effects(self, visage, effects, visual, audio):
        await visage.apply(ENTITY_ID, "fire-aura")
        await effects.drain()
        await visage.remove(ENTITY_ID, "fire-aura")
        await effects.drain()

        assert FIRE_TAG not in visual.live[ENTITY_ID]
        assert audio.audible == []
        assert effects.running(ENTITY_ID) == {}

    @pytest.mark.asyncio
    async def test_reapply_does_not_duplicate(self, visage, effects, visual, audio):
        await visage.apply(ENTITY_ID, "fire-aura")
        await visage.apply(ENTITY_ID, "fire-aura")
        await effects.drain()

        assert len(visual.live[ENTITY_ID][FIRE_TAG]) == 1
        assert len(audio.audible) == 1
        assert effects.running(ENTITY_ID) == {FIRE_TAG: 2}

    @pytest.mark.asyncio
    async def test_revert_stops_every_slot(self, visage, effects, visual, audio):
        await visage.apply(ENTITY_ID, "fire-aura", as_identity=True)
        await visage.apply(ENTITY_ID, "red-ring")
        await effects.drain()
        assert "visage-base" in visual.live[ENTITY_ID]

        await visage.revert(ENTITY_ID)
        await effects.drain()
        assert visual.live[ENTITY_ID] == {}
        assert audio.audible == []

    @pytest.mark.asyncio
    async def test_revert_leaves_foreign_effects(self, visage, effects, visual):
        visual.live[ENTITY_ID] = {'other-module': [(ENTITY_ID, 'other-module', 0)]}
        await visage.apply(ENTITY_ID, "fire-aura")
        await visage.revert(ENTITY_ID)
        await effects.drain()
        assert list(visual.live[ENTITY_ID]) == ['other-module']

    @pytest.mark.asyncio
    async def test_unresolvable_path_is_skipped(self, visual):
        manager = EffectLifecycleManager(visual=visual)
        layer = fx_layer("m", {'id': "missing", 'path': "jb2a.nothing"}, {'id': "ok", 'path': "fx/ok.webm"})
        await manager.apply(ENTITY_ID, layer, False)
        assert [call['effect'] for call in visual.calls] == ["ok"]

    @pytest.mark.asyncio
    async def test_no_backends_is_a_no_op(self):
        manager = EffectLifecycleManager()
        layer = fx_layer("m", {'id': "v", 'path': "fx/a.webm"}, {'id': "a", 'type': "audio", 'path': "sfx/a.ogg"})
        await manager.apply(ENTITY_ID, layer, False)
        await manager.drain()
        assert manager.running(ENTITY_ID) == {}


# ══════════════════════════════════════════════════════════════════════════
# Races
# ══════════════════════════════════════════════════════════════════════════

class TestRaces:
    """A start that resolves after its layer was removed never survives."""

    @pytest.mark.asyncio
    async def test_remove_during_audio_load(self, visage, effects, audio):
        audio.hold()
        await visage.apply(ENTITY_ID, "fire-aura")
        await audio.wait_started()

        await visage.remove(ENTITY_ID, "fire-aura")
        audio.release()
        await effects.drain()

        assert len(audio.sounds) == 1
        assert audio.sounds[0].stopped
        assert effects.running(ENTITY_ID) == {}

    @pytest.mark.asyncio
    async def test_apply_remove_apply(self, visage, effects, visual, audio):
        audio.hold()
        await visage.apply(ENTITY_ID, "fire-aura")
        await audio.wait_started()
        await visage.remove(ENTITY_ID, "fire-aura")
        await visage.apply(ENTITY_ID, "fire-aura")
        audio.release()
        await effects.drain()

        first, second = audio.sounds
        assert first.stopped
        assert second.playing
        assert len(visual.live[ENTITY_ID][FIRE_TAG]) == 1
        assert effects.running(ENTITY_ID) == {FIRE_TAG: 2}

    @pytest.mark.asyncio
    async def test_late_visual_is_stopped(self, visual):
        manager = EffectLifecycleManager(visual=visual)
        layer = fx_layer("m", {'id': "v", 'path': "fx/a.webm"})
        original_play = visual.play

        async def slow_play(*args):
            handle = await original_play(*args)
            # The layer is removed while this effect is still starting
            await manager.remove(ENTITY_ID, "m", False)
            return handle

        visual.play = slow_play
        await manager.apply(ENTITY_ID, layer, False)
        assert visual.live[ENTITY_ID] == {}
        assert manager.running(ENTITY_ID) == {}

    @pytest.mark.asyncio
    async def test_remove_while_apply_ends_old_visuals(self, visual, audio):
        manager = EffectLifecycleManager(visual=visual, audio=audio)
        layer = fx_layer("m", {'id': "v", 'path': "fx/a.webm"},
                         {'id': "a", 'type': "audio", 'path': "sfx/a.ogg"})
        slow_first_end(visual)

        applying = asyncio.ensure_future(manager.apply(ENTITY_ID, layer, False))
        await asyncio.sleep(0)
        await manager.remove(ENTITY_ID, "m", False)
        await applying
        await manager.drain()

        assert visual.calls == []
        assert audio.sounds == []
        assert manager.running(ENTITY_ID) == {}

    @pytest.mark.asyncio
    async def test_apply_while_remove_ends_visuals(self, visual, audio):
        manager = EffectLifecycleManager(visual=visual, audio=audio)
        layer = fx_layer("m", {'id': "a", 'type': "audio", 'path': "sfx/a.ogg"})
        await manager.apply(ENTITY_ID, layer, False)
        await manager.drain()
        first = audio.sounds[0]
        slow_first_end(visual)

        removing = asyncio.ensure_future(manager.remove(ENTITY_ID, "m", False))
        await asyncio.sleep(0)
        await manager.apply(ENTITY_ID, layer, False)
        await removing
        await manager.drain()

        assert first.stopped
        assert audio.sounds[1].playing
        assert manager.running(ENTITY_ID) == {"visage-mask-m": 1}

    @pytest.mark.asyncio
    async def test_unstartable_effects_leave_nothing_running(self, visual, audio):
        visual.fail = audio.fail = True
        manager = EffectLifecycleManager(visual=visual, audio=audio)
        layer = fx_layer("m", {'id': "v", 'path': "fx/a.webm"},
                         {'id': "a", 'type': "audio", 'path': "sfx/a.ogg"},
                         {'id': "gone", 'path': "jb2a.nothing"})
        await manager.apply(ENTITY_ID, layer, False)
        await manager.drain()
        assert manager.running(ENTITY_ID) == {}
        assert manager._groups == {}


# ══════════════════════════════════════════════════════════════════════════
# Timing
# ══════════════════════════════════════════════════════════════════════════

class TestTiming:
    """Delays are anchored at the earliest effect."""

    @pytest.mark.asyncio
    async def test_negative_delay_anchors_at_zero(self, visual):
        manager = EffectLifecycleManager(visual=visual)
        layer = fx_layer(
            "m",
            {'id': "early", 'path': "fx/a.webm", 'delay': -0.5},
            {'id': "plain", 'path': "fx/b.webm"},
            {'id': "late", 'path': "fx/c.webm", 'delay': 0.25},
        )
        await manager.apply(ENTITY_ID, layer, False)
        assert [call['delay_ms'] for call in visual.calls] == [0.0, 500.0, 750.0]

    @pytest.mark.asyncio
    async def test_delayed_audio_is_cancelled_by_remove(self, audio):
        manager = EffectLifecycleManager(audio=audio)
        layer = fx_layer("m", {'id': "a", 'type': "audio", 'path': "sfx/a.ogg", 'delay': 5})
        await manager.apply(ENTITY_ID, layer, False)
        await manager.remove(ENTITY_ID, "m", False)
        await manager.drain()
        assert audio.sounds == []

    @pytest.mark.asyncio
    async def test_delayed_audio_starts_later(self, audio):
        manager = EffectLifecycleManager(audio=audio)
        layer = fx_layer("m", {'id': "a", 'type': "audio", 'path': "sfx/a.ogg", 'delay': 0.02})
        await manager.apply(ENTITY_ID, layer, False)
        assert audio.sounds == []
        await manager.drain()
        assert len(audio.audible) == 1

    @pytest.mark.asyncio
    async def test_one_shot_visual_has_no_duration(self, visual):
        manager = EffectLifecycleManager(visual=visual)
        await manager.apply(ENTITY_ID, fx_layer("m", {'id': "v", 'path': "fx/a.webm", 'loop': False}), False)
        assert visual.calls[0]['duration_ms'] is None


# ══════════════════════════════════════════════════════════════════════════
# Audio
# ══════════════════════════════════════════════════════════════════════════

class TestAudio:
    """Volume handling and cleanup of sounds."""

    @pytest.mark.asyncio
    async def test_fade_in_and_out(self, audio, settings):
        manager = EffectLifecycleManager(audio=audio, settings=settings)
        layer = fx_layer("m", {
            'id': "a", 'type': "audio", 'path': "sfx/a.ogg",
            'opacity': 0.5, 'fadeIn': 30, 'fadeOut': 30,
        })
        await manager.apply(ENTITY_ID, layer, False)
        await manager.drain()
        sound = audio.sounds[0]
        assert sound.volume == 0.5

        await manager.remove(ENTITY_ID, "m", False)
        assert sound.playing
        await manager.drain()
        assert sound.stopped
        assert sound.volume == 0.0

    @pytest.mark.asyncio
    async def test_one_shot_sound_forgets_itself(self, audio):
        manager = EffectLifecycleManager(audio=audio)
        layer = fx_layer("m", {'id': "a", 'type': "audio", 'path': "sfx/a.ogg", 'loop': False})
        await manager.apply(ENTITY_ID, layer, False)
        await manager.drain()
        assert manager.running(ENTITY_ID) == {"visage-mask-m": 1}

        audio.sounds[0].finish()
        assert manager.running(ENTITY_ID) == {}

    @pytest.mark.asyncio
    async def test_stop_all_audio(self, visage, effects, store, base_document, audio):
        store.add("token-2", base_document)
        await visage.apply(ENTITY_ID, "fire-aura")
        await visage.apply("token-2", "fire-aura")
        await effects.drain()
        assert len(audio.audible) == 2

        effects.stop_all_audio()
        assert audio.audible == []
        assert effects.running(ENTITY_ID) == {}
        assert effects.running("token-2") == {}


# ══════════════════════════════════════════════════════════════════════════
# Slots and restore
# ══════════════════════════════════════════════════════════════════════════

class TestSlots:
    """Effects follow their layer's slot."""

    @pytest.fixture
    def burning_bear(self, library):
        library.save({
            'id': "burning-bear", 'label': "Burning Bear", 'mode': "identity",
            'changes': {'name': "Burning Bear"},
            'effects': [
                {'id': "glow", 'path': "fx/glow.webm"},
                {'id': "roar", 'type': "audio", 'path': "sfx/roar.ogg"},
                {'id': "flash", 'path': "fx/flash.webm", 'loop': False},
            ],
        })

    @pytest.mark.asyncio
    async def test_identity_effects_stop_when_replaced(self, visage, effects, visual, audio, burning_bear):
        await visage.apply(ENTITY_ID, "burning-bear")
        await effects.drain()
        assert len(visual.live[ENTITY_ID]["visage-base"]) == 2

        await visage.apply(ENTITY_ID, "wolf-form")
        await effects.drain()
        assert "visage-base" not in visual.live[ENTITY_ID]
        assert audio.audible == []

    @pytest.mark.asyncio
    async def test_promotion_moves_effects(self, visage, effects, visual):
        await visage.apply(ENTITY_ID, "fire-aura")
        await visage.apply(ENTITY_ID, "fire-aura", as_identity=True)
        await effects.drain()
        assert list(visual.live[ENTITY_ID]) == ["visage-base"]
        assert effects.running(ENTITY_ID) == {"visage-base": 2}

    @pytest.mark.asyncio
    async def test_restore_skips_one_shots(self, visage, effects, visual, audio, burning_bear):
        await visage.apply(ENTITY_ID, "burning-bear")
        await effects.drain()
        visual.calls.clear()

        await visage.restore_effects(ENTITY_ID)
        await effects.drain()

        assert [call['effect'] for call in visual.calls] == ["glow"]
        assert len(visual.live[ENTITY_ID]["visage-base"]) == 1
        assert len(audio.audible) == 1
