"""
Tests for the Visage stack controller.

Covers:
- Identity + overlay composition and revert (worked scenario)
- Idempotent re-application
- Revert and remove-to-empty restore the exact true form
- Identity replacement, kind overrides and clear_stack
- Not-found outcomes versus raised errors
- A failed write applies nothing; a failed effect undoes nothing
"""
import pytest

from visage.errors import EntityNotFoundError, PersistenceError
from visage.models.snapshot import Snapshot
from visage.models.stack import LayerStack, read_flags
from visage.utils import logger as visage_logger

ENTITY_ID = "token-1"


async def live(visage):
    return Snapshot.from_document(await visage.store.read(ENTITY_ID))


async def stack_of(visage):
    return LayerStack.from_document(await visage.store.read(ENTITY_ID))


# ══════════════════════════════════════════════════════════════════════════
# Apply and revert
# ══════════════════════════════════════════════════════════════════════════

class TestApplyAndRevert:
    """The basic identity + overlay workflow."""

    @pytest.mark.asyncio
    async def test_identity_and_overlay_scenario(self, visage):
        assert await visage.apply(ENTITY_ID, "bear-form")
        assert await visage.apply(ENTITY_ID, "mirror-x")

        doc = await visage.store.read(ENTITY_ID)
        assert doc['name'] == "Bear"
        assert doc['texture'] == {'src': "tokens/bear.webp", 'scaleX': -1.5, 'scaleY': 1.5}
        assert (await stack_of(visage)).ids == ["bear-form", "mirror-x"]

        assert await visage.revert(ENTITY_ID)
        doc = await visage.store.read(ENTITY_ID)
        assert doc['name'] == "Goblin"
        assert doc['texture'] == {'src': "tokens/goblin.webp", 'scaleX': 1.0, 'scaleY': 1.0}

    @pytest.mark.asyncio
    async def test_apply_is_idempotent(self, visage):
        await visage.apply(ENTITY_ID, "mirror-x")
        first = await visage.store.read(ENTITY_ID)
        await visage.apply(ENTITY_ID, "mirror-x")
        second = await visage.store.read(ENTITY_ID)
        assert first == second
        assert (await stack_of(visage)).ids == ["mirror-x"]

    @pytest.mark.asyncio
    async def test_revert_restores_true_form(self, visage, base_document):
        for mask_id in ("bear-form", "mirror-x", "giant", "red-ring"):
            await visage.apply(ENTITY_ID, mask_id)
        await visage.revert(ENTITY_ID)

        doc = await visage.store.read(ENTITY_ID)
        assert Snapshot.from_document(doc) == Snapshot.from_document(base_document)
        assert doc['ring'] == {'enabled': False}
        assert not read_flags(doc)

    @pytest.mark.asyncio
    async def test_revert_without_layers_is_harmless(self, visage, base_document):
        assert await visage.revert(ENTITY_ID)
        assert await live(visage) == Snapshot.from_document(base_document)

    @pytest.mark.asyncio
    async def test_remove_to_empty_equals_revert(self, make_visage):
        removed = make_visage()
        await removed.apply(ENTITY_ID, "giant")
        await removed.apply(ENTITY_ID, "mirror-x")
        await removed.remove(ENTITY_ID, "mirror-x")
        await removed.remove(ENTITY_ID, "giant")

        reverted = make_visage()
        await reverted.apply(ENTITY_ID, "giant")
        await reverted.apply(ENTITY_ID, "mirror-x")
        await reverted.revert(ENTITY_ID)

        assert await removed.store.read(ENTITY_ID) == await reverted.store.read(ENTITY_ID)

    @pytest.mark.asyncio
    async def test_overlays_combine_orthogonally(self, visage):
        await visage.apply(ENTITY_ID, "mirror-x")
        await visage.apply(ENTITY_ID, "giant")
        snap = await live(visage)
        assert snap.scale_magnitude == 2.0
        assert snap.mirror_x is True
        assert snap.width == 2.0


# ══════════════════════════════════════════════════════════════════════════
# Identity slot
# ══════════════════════════════════════════════════════════════════════════

class TestIdentitySlot:
    """Kinds, overrides and clearing the stack."""

    @pytest.mark.asyncio
    async def test_local_mask_defaults_to_identity(self, visage):
        await visage.apply(ENTITY_ID, "wolf-form")
        stack = await stack_of(visage)
        assert stack.identity_id == "wolf-form"
        assert stack.identity.source == "local"

    @pytest.mark.asyncio
    async def test_new_identity_replaces_old(self, visage):
        await visage.apply(ENTITY_ID, "wolf-form")
        await visage.apply(ENTITY_ID, "mirror-x")
        await visage.apply(ENTITY_ID, "bear-form")
        assert (await stack_of(visage)).ids == ["bear-form", "mirror-x"]
        assert not await visage.is_active(ENTITY_ID, "wolf-form")

    @pytest.mark.asyncio
    async def test_force_identity(self, visage):
        await visage.apply(ENTITY_ID, "mirror-x", as_identity=True)
        assert (await stack_of(visage)).identity_id == "mirror-x"

    @pytest.mark.asyncio
    async def test_force_overlay(self, visage):
        await visage.apply(ENTITY_ID, "bear-form", as_identity=False)
        stack = await stack_of(visage)
        assert stack.identity is None
        assert stack.ids == ["bear-form"]

    @pytest.mark.asyncio
    async def test_clear_stack(self, visage):
        await visage.apply(ENTITY_ID, "giant")
        await visage.apply(ENTITY_ID, "mirror-x")
        await visage.apply(ENTITY_ID, "wolf-form", clear_stack=True)

        stack = await stack_of(visage)
        assert stack.ids == ["wolf-form"]
        assert stack.identity_id == "wolf-form"

        doc = await visage.store.read(ENTITY_ID)
        assert doc['name'] == "Wolf"
        assert doc['texture']['scaleX'] == 1.0
        assert doc['width'] == 1.0
        assert read_flags(doc)['originalState']['name'] == "Goblin"

    @pytest.mark.asyncio
    async def test_remove_identity_keeps_overlays(self, visage):
        await visage.apply(ENTITY_ID, "bear-form")
        await visage.apply(ENTITY_ID, "mirror-x")
        assert await visage.remove(ENTITY_ID, "bear-form")

        doc = await visage.store.read(ENTITY_ID)
        assert doc['name'] == "Goblin"
        assert doc['texture'] == {'src': "tokens/goblin.webp", 'scaleX': -1.0, 'scaleY': 1.0}


# ══════════════════════════════════════════════════════════════════════════
# Not found and failures
# ══════════════════════════════════════════════════════════════════════════

class TestOutcomes:
    """False for absent things, exceptions for real failures."""

    @pytest.mark.asyncio
    async def test_unknown_mask(self, visage, store):
        assert await visage.apply(ENTITY_ID, "no-such-mask") is False
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_local_mask_of_other_owner(self, visage, store, base_document):
        store.add("token-2", dict(base_document, actorId="actor-2"))
        assert await visage.apply("token-2", "wolf-form") is False

    @pytest.mark.asyncio
    async def test_remove_absent_layer(self, visage, store):
        assert await visage.remove(ENTITY_ID, "mirror-x") is False
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_unknown_entity(self, visage):
        with pytest.raises(EntityNotFoundError):
            await visage.apply("ghost", "mirror-x")
        with pytest.raises(KeyError):
            await visage.revert("ghost")

    @pytest.mark.asyncio
    async def test_unusable_mask_is_reported(self, visage, library):
        reported = []
        visage_logger.set_notifier(lambda title, message: reported.append(title))
        library.save({'id': "broken", 'changes': {'name': "X"}, 'effects': [{'type': "smell"}]})

        assert await visage.apply(ENTITY_ID, "broken") is False
        assert reported == ["Mask Error"]

    @pytest.mark.asyncio
    async def test_failed_write_applies_nothing(self, visage, store, visual, base_document):
        store.fail_next_write()
        with pytest.raises(PersistenceError):
            await visage.apply(ENTITY_ID, "fire-aura")

        assert await store.read(ENTITY_ID) == base_document
        assert not await visage.is_active(ENTITY_ID, "fire-aura")
        assert visual.calls == []

    @pytest.mark.asyncio
    async def test_failed_write_is_reported(self, visage, store):
        reported = []
        visage_logger.set_notifier(lambda title, message: reported.append(title))
        store.fail_next_write()
        with pytest.raises(PersistenceError):
            await visage.apply(ENTITY_ID, "mirror-x")
        assert reported == ["Persistence Error"]

    @pytest.mark.asyncio
    async def test_failed_revert_keeps_layers(self, visage, store):
        await visage.apply(ENTITY_ID, "mirror-x")
        store.fail_next_write()
        with pytest.raises(PersistenceError):
            await visage.revert(ENTITY_ID)
        assert await visage.is_active(ENTITY_ID, "mirror-x")

    @pytest.mark.asyncio
    async def test_failed_effects_keep_composition(self, make_visage):
        reported = []
        visage_logger.set_notifier(lambda title, message: reported.append(title))
        visage = make_visage(failing=True)

        assert await visage.apply(ENTITY_ID, "fire-aura")
        await visage.effects.drain()

        doc = await visage.store.read(ENTITY_ID)
        assert doc['displayName'] == 30
        assert await visage.is_active(ENTITY_ID, "fire-aura")
        assert reported == ["Effect Error", "Effect Error"]


# ══════════════════════════════════════════════════════════════════════════
# Queries
# ══════════════════════════════════════════════════════════════════════════

class TestQueries:
    """Read-only helpers."""

    @pytest.mark.asyncio
    async def test_available_masks(self, visage):
        masks = await visage.get_available_masks(ENTITY_ID)
        assert masks[0] == {'id': "wolf-form", 'label': "Wolf Form", 'kind': "identity", 'source': "local"}
        by_id = {mask['id']: mask for mask in masks}
        assert by_id['mirror-x']['kind'] == "overlay"
        assert by_id['bear-form']['kind'] == "identity"
        assert all(mask['source'] == "global" for mask in masks[1:])

    @pytest.mark.asyncio
    async def test_is_active(self, visage):
        assert not await visage.is_active(ENTITY_ID, "giant")
        await visage.apply(ENTITY_ID, "giant")
        assert await visage.is_active(ENTITY_ID, "giant")

    @pytest.mark.asyncio
    async def test_default_mask_is_true_form(self, visage):
        await visage.apply(ENTITY_ID, "bear-form")
        default = await visage.get_default_mask(ENTITY_ID)
        assert default['id'] == "default"
        assert default['isDefault'] is True
        assert default['mode'] == "identity"
        assert default['changes']['name'] == "Goblin"
