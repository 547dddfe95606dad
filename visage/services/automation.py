"""
Visage - Automation Engine

Applies or removes masks when conditions on an entity change, e.g. swap to
a "bloodied" look when hit points drop below half.

A mask opts in through its ``automation`` block:

    {
        "enabled": true,
        "logic": "AND" | "OR",
        "conditions": [...],
        "onEnter": {"action": "apply" | "remove"},
        "onExit": {"action": "apply" | "remove"}
    }

Each (entity, mask) pair is latched: onEnter only fires on a FALSE->TRUE
transition of the combined condition, onExit only on TRUE->FALSE.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from visage.utils.objects import get_property

logger = logging.getLogger(__name__)

ACTION_APPLY = "apply"
ACTION_REMOVE = "remove"


@dataclass
class EntityContext:
    """Observable state of one entity, as far as conditions care

    Attributes:
        entity_id: Entity the masks are applied to
        owner_id: Owner whose local masks may automate this entity
        attributes: Nested attribute data (e.g. {"hp": {"value": 3, "max": 10}})
        statuses: Active status ids
        in_combat: Entity takes part in a started combat
        targeted: Entity is targeted by any user
        elevation: Current elevation
        darkness: Scene darkness level (0..1)
        lit: Scene global light is on within its darkness range
        regions: Ids or names of the regions containing the entity
    """
    entity_id: str
    owner_id: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    statuses: Set[str] = field(default_factory=set)
    in_combat: bool = False
    targeted: bool = False
    elevation: float = 0.0
    darkness: float = 0.0
    lit: bool = False
    regions: Set[str] = field(default_factory=set)


# ======================================================================
# CONDITION RESOLVERS
# ======================================================================

def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_attribute(context: EntityContext, condition: Mapping[str, Any]) -> bool:
    """Compare an attribute against a value, optionally as a percentage of its max"""
    path = condition.get('path')
    if not path:
        return False

    check = _number(get_property(context.attributes, path))
    target = _number(condition.get('value'))
    if check is None or target is None:
        return False

    if condition.get('mode') == 'percent':
        # The maximum lives next to the value (hp.value -> hp.max)
        max_path = re.sub(r'\.value$', '.max', path)
        maximum = _number(get_property(context.attributes, max_path))
        if maximum is None or maximum <= 0:
            logger.warning(f"Cannot calculate percentage for {path}: no valid max at {max_path}")
            return False
        check = check / maximum * 100

    operator = condition.get('operator')
    if operator == 'lte':
        return check <= target
    if operator == 'gte':
        return check >= target
    if operator == 'eq':
        return check == target
    if operator == 'neq':
        return check != target
    return False


def evaluate_status(context: EntityContext, condition: Mapping[str, Any]) -> bool:
    status_id = condition.get('statusId')
    if not status_id:
        return False
    has_status = status_id in context.statuses
    operator = condition.get('operator')
    if operator == 'active':
        return has_status
    if operator == 'inactive':
        return not has_status
    return False


def _compare(current: float, condition: Mapping[str, Any]) -> bool:
    value = _number(condition.get('value')) or 0.0
    operator = condition.get('operator')
    if operator == 'gt':
        return current > value
    if operator == 'lt':
        return current < value
    return current == value


def evaluate_event(context: EntityContext, condition: Mapping[str, Any]) -> bool:
    event_id = condition.get('eventId')
    active = condition.get('operator') == 'active'

    if event_id == 'combat':
        return context.in_combat if active else not context.in_combat
    if event_id == 'targeted':
        return context.targeted if active else not context.targeted
    if event_id == 'globalLight':
        return context.lit if active else not context.lit
    if event_id == 'region':
        region_id = condition.get('regionId')
        if not region_id:
            return False
        inside = region_id in context.regions
        return inside if active else not inside
    if event_id == 'elevation':
        return _compare(_number(context.elevation) or 0.0, condition)
    if event_id == 'darkness':
        return _compare(_number(context.darkness) or 0.0, condition)
    return False


_RESOLVERS = {
    'attribute': evaluate_attribute,
    'status': evaluate_status,
    'event': evaluate_event,
}


def evaluate_automation(automation: Mapping[str, Any], context: EntityContext) -> bool:
    """Combine an automation block's enabled conditions with its logic"""
    results = []
    for condition in automation.get('conditions') or ():
        if condition.get('disabled'):
            continue
        resolver = _RESOLVERS.get(condition.get('type'))
        if resolver is not None:
            results.append(resolver(context, condition))

    if automation.get('logic') == 'AND':
        return all(results)
    return any(results)


def is_automated(entry: Mapping[str, Any]) -> bool:
    automation = entry.get('automation')
    return bool(
        isinstance(automation, Mapping)
        and automation.get('enabled')
        and automation.get('conditions')
    )


# ======================================================================
# ENGINE
# ======================================================================

@dataclass
class _Watch:
    owner_id: Optional[str]
    masks: List[Dict[str, Any]]
    latches: Dict[str, bool] = field(default_factory=dict)


class AutomationEngine:
    """Watches entities and fires mask transitions through a Visage controller

    Args:
        controller: Stack controller used for apply/remove
        library: Source of automated mask definitions
    """

    def __init__(self, controller, library):
        self.controller = controller
        self.library = library
        self._registry: Dict[str, _Watch] = {}

    def build_registry(self, contexts: Iterable[EntityContext]):
        """Rebuild the watch list, keeping latch state of known entities

        Global automated masks apply to every entity; local ones only to
        entities of their owner.
        """
        previous = self._registry
        self._registry = {}
        shared = [entry for entry in self.library.globals if is_automated(entry)]

        for context in contexts:
            local = [
                entry for entry in self.library.get_local(context.owner_id)
                if is_automated(entry)
            ]
            masks = local + shared
            if not masks:
                continue
            old = previous.get(context.entity_id)
            self._registry[context.entity_id] = _Watch(
                owner_id=context.owner_id,
                masks=masks,
                latches=old.latches if old else {},
            )
        logger.debug(f"Automation watching {len(self._registry)} entit(y/ies)")

    def forget(self, entity_id: str):
        self._registry.pop(entity_id, None)

    def is_watching(self, entity_id: str) -> bool:
        return entity_id in self._registry

    async def evaluate(self, context: EntityContext) -> List[Tuple[str, str]]:
        """Evaluate every automated mask of an entity and fire transitions

        Returns:
            (mask_id, action) pairs that were executed
        """
        watch = self._registry.get(context.entity_id)
        if watch is None:
            return []

        fired = []
        for mask in watch.masks:
            automation = mask['automation']
            mask_id = mask['id']
            is_true = evaluate_automation(automation, context)
            was_true = watch.latches.get(mask_id, False)

            if is_true and not was_true:
                watch.latches[mask_id] = True
                step = automation.get('onEnter') or {}
            elif was_true and not is_true:
                watch.latches[mask_id] = False
                step = automation.get('onExit') or {}
            else:
                continue

            action = step.get('action')
            if action == ACTION_APPLY:
                await self.controller.apply(context.entity_id, mask_id)
            elif action == ACTION_REMOVE:
                await self.controller.remove(context.entity_id, mask_id)
            else:
                continue
            fired.append((mask_id, action))
        return fired

    async def evaluate_all(self, contexts: Iterable[EntityContext]) -> Dict[str, List[Tuple[str, str]]]:
        results = {}
        for context in contexts:
            if self.is_watching(context.entity_id):
                results[context.entity_id] = await self.evaluate(context)
        return results
