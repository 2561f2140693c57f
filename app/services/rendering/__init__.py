from app.services.rendering.backends import (
    HttpRenderBackend,
    PdfiumRenderBackend,
    RenderBackend,
    pack_page_archive,
    unpack_page_archive,
)
from app.services.rendering.renderer import Renderer, check_document

__all__ = [
    "HttpRenderBackend",
    "PdfiumRenderBackend",
    "RenderBackend",
    "Renderer",
    "check_document",
    "pack_page_archive",
    "unpack_page_archive",
]
