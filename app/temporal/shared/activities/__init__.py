from .parse_stages import (
    render_document,
    classify_pages,
    extract_pages,
    reconcile_and_finalize,
    mark_parse_failed,
    cleanup_parse,
    purge_expired_artifacts,
)
from .notifications import notify_parse_finished

__all__ = [
    "render_document",
    "classify_pages",
    "extract_pages",
    "reconcile_and_finalize",
    "mark_parse_failed",
    "cleanup_parse",
    "purge_expired_artifacts",
    "notify_parse_finished",
]
