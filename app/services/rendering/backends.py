"""Rasterization backends used by the Renderer."""

import asyncio
import io
import re
import zipfile
from abc import ABC, abstractmethod
from typing import List

import httpx
import pypdfium2 as pdfium

from app.core.exceptions import RenderError, RenderErrorKind
from app.models.classification import PageImage
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

_PAGE_NAME = re.compile(r"(\d+)\.png$", re.IGNORECASE)

# PDF user space is 72 points per inch
PDF_POINTS_PER_INCH = 72.0


class RenderBackend(ABC):
    """Turns validated PDF bytes into ordered page images."""

    name: str = "base"

    @abstractmethod
    async def render(self, document_bytes: bytes, resolution: int) -> List[PageImage]:
        """Render every page at ``resolution`` DPI.

        Raises:
            RenderError: INVALID_INPUT for documents the backend cannot open,
                TRANSIENT for failures worth retrying
        """


class PdfiumRenderBackend(RenderBackend):
    """Renders locally with pypdfium2 in a worker thread."""

    name = "pdfium"

    async def render(self, document_bytes: bytes, resolution: int) -> List[PageImage]:
        return await asyncio.to_thread(self._render_sync, document_bytes, resolution)

    def _render_sync(self, document_bytes: bytes, resolution: int) -> List[PageImage]:
        try:
            document = pdfium.PdfDocument(document_bytes)
        except pdfium.PdfiumError as e:
            raise RenderError(
                f"Document could not be opened as PDF: {e}",
                kind=RenderErrorKind.INVALID_INPUT,
                original_error=e,
            ) from e

        scale = resolution / PDF_POINTS_PER_INCH
        pages: List[PageImage] = []
        try:
            for index in range(len(document)):
                page = document[index]
                bitmap = page.render(scale=scale)
                image = bitmap.to_pil().convert("RGB")
                buffer = io.BytesIO()
                image.save(buffer, format="PNG")
                pages.append(
                    PageImage(page_number=index + 1, data=buffer.getvalue(), resolution=resolution)
                )
                page.close()
        except pdfium.PdfiumError as e:
            raise RenderError(
                f"Failed to render page {len(pages) + 1}: {e}",
                kind=RenderErrorKind.INVALID_INPUT,
                original_error=e,
            ) from e
        finally:
            document.close()

        return pages


class HttpRenderBackend(RenderBackend):
    """Delegates rendering to an external service that returns a ZIP of PNG pages."""

    name = "http"

    def __init__(self, service_url: str, api_key: str = "", timeout: int = 120):
        self.service_url = service_url
        self.api_key = api_key
        self.timeout = timeout

    async def render(self, document_bytes: bytes, resolution: int) -> List[PageImage]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.service_url,
                    params={"dpi": resolution},
                    files={"file": ("document.pdf", document_bytes, "application/pdf")},
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            kind = (
                RenderErrorKind.INVALID_INPUT
                if 400 <= status_code < 500 and status_code != 429
                else RenderErrorKind.TRANSIENT
            )
            raise RenderError(
                f"Render service returned {status_code}", kind=kind, original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise RenderError(
                f"Render service unreachable: {e}", kind=RenderErrorKind.TRANSIENT, original_error=e
            ) from e

        try:
            return unpack_page_archive(response.content, resolution)
        except zipfile.BadZipFile as e:
            raise RenderError(
                "Render service returned a malformed archive",
                kind=RenderErrorKind.TRANSIENT,
                original_error=e,
            ) from e


def pack_page_archive(pages: List[PageImage]) -> bytes:
    """Bundle page images into a ZIP with zero-padded ``page-NNN.png`` names."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for page in pages:
            archive.writestr(f"page-{page.page_number:03d}.png", page.data)
    return buffer.getvalue()


def unpack_page_archive(archive_bytes: bytes, resolution: int) -> List[PageImage]:
    """Inverse of ``pack_page_archive``; pages are ordered by the number in their file name."""
    pages: List[PageImage] = []
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as archive:
        for name in archive.namelist():
            match = _PAGE_NAME.search(name)
            if not match:
                continue
            pages.append(
                PageImage(
                    page_number=int(match.group(1)),
                    data=archive.read(name),
                    resolution=resolution,
                )
            )
    return sorted(pages, key=lambda p: p.page_number)
