"""Exception types raised by the Visage core.

"Not found" outcomes (unknown mask id, absent layer) are reported as
``False`` returns and never appear here.
"""


class VisageError(Exception):
    """Base class for all Visage errors"""


class EntityNotFoundError(VisageError, KeyError):
    """Raised when an operation targets an entity the store does not know"""

    def __init__(self, entity_id: str):
        super().__init__(entity_id)
        self.entity_id = entity_id

    def __str__(self) -> str:
        return f"Entity '{self.entity_id}' not found"


class PersistenceError(VisageError):
    """Raised by a document store when a write cannot be committed"""


class MaskDataError(VisageError):
    """Raised when a mask definition is structurally unusable"""
