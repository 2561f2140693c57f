from app.services.extraction.extractor import (
    PageExtractionOutcome,
    PageExtractor,
    apply_second_turn,
    enrich_outcomes,
    parse_page_response,
)

__all__ = [
    "PageExtractionOutcome",
    "PageExtractor",
    "apply_second_turn",
    "enrich_outcomes",
    "parse_page_response",
]
