from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import ConfigurationError, RenderError, RenderErrorKind
from app.models.classification import PageImage
from app.services.rendering.backends import HttpRenderBackend, PdfiumRenderBackend, RenderBackend
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

PDF_MAGIC = b"%PDF"
# Some producers prepend a BOM or whitespace before the header
MAGIC_SEARCH_WINDOW = 8


def check_document(document_bytes: bytes, max_bytes: int) -> None:
    """Cheap signature and size checks run before any rendering work.

    Raises:
        RenderError: With kind INVALID_INPUT when the bytes are not an acceptable PDF
    """
    if not document_bytes:
        raise RenderError("Document is empty", kind=RenderErrorKind.INVALID_INPUT)
    if len(document_bytes) > max_bytes:
        raise RenderError(
            f"Document is {len(document_bytes)} bytes, limit is {max_bytes}",
            kind=RenderErrorKind.INVALID_INPUT,
        )
    if PDF_MAGIC not in document_bytes[:MAGIC_SEARCH_WINDOW]:
        raise RenderError("Document is not a PDF", kind=RenderErrorKind.INVALID_INPUT)


class Renderer:
    """Validates raw document bytes and rasterizes them page by page."""

    def __init__(self, backend: Optional[RenderBackend] = None, max_bytes: Optional[int] = None):
        self.backend = backend or build_render_backend()
        self.max_bytes = max_bytes or settings.render.max_bytes

    async def render(self, document_bytes: bytes, resolution: int) -> List[PageImage]:
        """Render a document into ordered page images.

        Args:
            document_bytes: Raw PDF bytes
            resolution: Target DPI

        Returns:
            Page images ordered by page number, starting at 1

        Raises:
            RenderError: INVALID_INPUT for bad documents, TRANSIENT for backend failures
        """
        check_document(document_bytes, self.max_bytes)

        pages = await self.backend.render(document_bytes, resolution)
        if not pages:
            raise RenderError("Document has no pages", kind=RenderErrorKind.INVALID_INPUT)

        LOGGER.info(
            f"Rendered {len(pages)} pages at {resolution} DPI",
            extra={"backend": self.backend.name, "page_count": len(pages)},
        )
        return pages


def build_render_backend() -> RenderBackend:
    backend = settings.render.backend.lower()
    if backend == "pdfium":
        return PdfiumRenderBackend()
    if backend == "http":
        if not settings.render.service_url:
            raise ConfigurationError("RENDER_SERVICE_URL is required for the http render backend")
        return HttpRenderBackend(
            service_url=settings.render.service_url,
            api_key=settings.render.service_api_key,
            timeout=settings.render.timeout,
        )
    raise ConfigurationError(f"Unknown render backend: {settings.render.backend}")
