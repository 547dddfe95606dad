"""
Visage - Services

Orchestration on top of the models: persistence, composition, the public
stack controller, effect lifecycle, edit reconciliation, the mask library
and automation.
"""

from .persistence import DocumentStore, InMemoryDocumentStore
from .snapshot_manager import SnapshotManager
from .compositor import Compositor, compose_snapshot
from .effects import AudioBackend, EffectLifecycleManager, Sound, VisualBackend
from .mask_library import MaskLibrary
from .reconciler import ExternalEditReconciler
from .stack_controller import Visage
from .automation import AutomationEngine, EntityContext

__all__ = [
    'DocumentStore', 'InMemoryDocumentStore', 'SnapshotManager',
    'Compositor', 'compose_snapshot',
    'AudioBackend', 'EffectLifecycleManager', 'Sound', 'VisualBackend',
    'MaskLibrary', 'ExternalEditReconciler', 'Visage',
    'AutomationEngine', 'EntityContext',
]
