from .activity_registry import ActivityRegistry
from .workflow_registry import WorkflowRegistry, WorkflowType
from .constants import *
from .discovery import discover_all

__all__ = [
    "ActivityRegistry",
    "WorkflowRegistry",
    "WorkflowType",
    "discover_all",
]
