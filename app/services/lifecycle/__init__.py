from app.services.lifecycle.cleanup_service import (
    CleanupReport,
    CleanupService,
    classification_cache_key,
)
from app.services.lifecycle.lifecycle_manager import LifecycleManager, new_run_id
from app.services.lifecycle.state_machine import TRANSITIONS, can_transition, sources_for

__all__ = [
    "CleanupReport",
    "CleanupService",
    "LifecycleManager",
    "TRANSITIONS",
    "can_transition",
    "classification_cache_key",
    "new_run_id",
    "sources_for",
]
