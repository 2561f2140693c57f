from typing import Dict, Optional

PHASE_TEMPLATES = {
    "queued": "Queued {file_name}",
    "rendering": "Rendering {file_name}",
    "rendered": "Rendered {page_count} pages",
    "classifying": "Finding key pages in {page_count} pages",
    "classified": "Found {critical_count} key pages",
    "extracting": "Reading terms from {critical_count} key pages",
    "reconciling": "Reconciling contract terms",
    "rechecking": "Re-reading {field_count} uncertain fields",
    "completed": "Contract terms ready",
    "needs_review": "Contract terms ready for review",
    "failed": "Processing failed: {error}",
}


class _SafeFormatter(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def format_phase_message(phase: str, metadata: Optional[Dict] = None) -> str:
    """Format a human-readable message for a pipeline phase."""
    template = PHASE_TEMPLATES.get(phase)
    if template is None:
        return f"Phase {phase}"
    return template.format_map(_SafeFormatter(**(metadata or {})))
