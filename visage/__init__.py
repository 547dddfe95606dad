"""
Visage - cosmetic identity layering for shared-scene entities

Applies stacks of partial appearance overrides ("masks") to an entity while
keeping its true form recoverable, and keeps the effects attached to those
masks running only while they are active.

Typical wiring:

    store = InMemoryDocumentStore(documents, user_id="gm")
    visage = create_visage(store, MaskLibrary())
    await visage.apply("token-1", "wolf-form")
"""

from typing import Optional

from visage.errors import EntityNotFoundError, MaskDataError, PersistenceError, VisageError
from visage.services import (
    AudioBackend, AutomationEngine, DocumentStore, EffectLifecycleManager,
    EntityContext, ExternalEditReconciler, InMemoryDocumentStore, MaskLibrary,
    Visage, VisualBackend,
)
from visage.utils.config import VisageSettings
from visage.utils.path_resolver import AssetPathResolver
from visage.version import VERSION

__version__ = VERSION


def create_visage(store: DocumentStore, library: MaskLibrary,
                  visual: Optional[VisualBackend] = None,
                  audio: Optional[AudioBackend] = None,
                  resolver: Optional[AssetPathResolver] = None,
                  settings: Optional[VisageSettings] = None,
                  reconcile: bool = True) -> Visage:
    """Wire a controller with its effect manager and edit reconciler

    Args:
        store: Entity document store
        library: Mask definition source
        visual, audio: Effect backends (effects are skipped when omitted)
        resolver: Asset path resolver shared by effects
        settings: Runtime settings; applied to logging on creation
        reconcile: Attach an ExternalEditReconciler to the store

    Returns:
        The Visage controller; its reconciler (if any) is ``visage.reconciler``
    """
    settings = settings or VisageSettings()
    settings.apply()
    effects = EffectLifecycleManager(visual, audio, resolver or library.resolver, settings)
    visage = Visage(store, library, effects, settings)
    if reconcile:
        visage.reconciler = ExternalEditReconciler(store, visage.compositor)
        visage.reconciler.attach()
    return visage


__all__ = [
    'Visage', 'create_visage', 'VisageSettings', 'AssetPathResolver',
    'DocumentStore', 'InMemoryDocumentStore', 'MaskLibrary',
    'EffectLifecycleManager', 'VisualBackend', 'AudioBackend',
    'ExternalEditReconciler', 'AutomationEngine', 'EntityContext',
    'VisageError', 'EntityNotFoundError', 'PersistenceError', 'MaskDataError',
]
