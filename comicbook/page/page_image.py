"""
Lazy image references for comic pages.

Page bytes are only read when the analyzer needs them, so opening a
large archive stays cheap.  Two sources are supported: image members of
a ZIP/CBZ archive, and pages of a PDF rendered through PyMuPDF.
"""

import io
import logging
import zipfile
from pathlib import Path
from typing import Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image

logger = logging.getLogger(__name__)

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


class PageImage:
    """Common interface: ``read_bytes()``, ``mime_type`` and ``size()``."""

    mime_type: str = "image/png"

    def read_bytes(self) -> bytes:
        raise NotImplementedError

    def size(self) -> Tuple[int, int]:
        """Return ``(width, height)`` in pixels."""
        with Image.open(io.BytesIO(self.read_bytes())) as img:
            return img.size

    def load(self) -> Image.Image:
        """Decode the page to a PIL RGB image."""
        with Image.open(io.BytesIO(self.read_bytes())) as img:
            return img.convert("RGB")


class ArchivePageImage(PageImage):
    """An image member inside a ZIP/CBZ archive."""

    def __init__(self, archive_path: str, member: str):
        self.archive_path = archive_path
        self.member = member
        self.mime_type = _MIME_TYPES.get(
            Path(member).suffix.lower(), "application/octet-stream"
        )

    def read_bytes(self) -> bytes:
        with zipfile.ZipFile(self.archive_path) as zf:
            return zf.read(self.member)

    def __repr__(self) -> str:
        return f"ArchivePageImage('{self.member}')"


class PdfPageImage(PageImage):
    """A PDF page, rendered to PNG on demand."""

    mime_type = "image/png"

    def __init__(self, pdf_path: str, page_index: int, scale: float = 2.0):
        self.pdf_path = pdf_path
        self.page_index = page_index
        self.scale = scale
        self._size: Optional[Tuple[int, int]] = None

    def _render(self) -> Image.Image:
        doc = fitz.open(self.pdf_path)
        try:
            page = doc.load_page(self.page_index)
            mat = fitz.Matrix(self.scale, self.scale)
            pix = page.get_pixmap(matrix=mat, alpha=False)
            self._size = (pix.width, pix.height)
            return Image.frombytes("RGB", [pix.width, pix.height], pix.samples)
        finally:
            doc.close()

    def read_bytes(self) -> bytes:
        buf = io.BytesIO()
        self._render().save(buf, format="PNG")
        return buf.getvalue()

    def load(self) -> Image.Image:
        return self._render()

    def size(self) -> Tuple[int, int]:
        if self._size is None:
            doc = fitz.open(self.pdf_path)
            try:
                rect = doc.load_page(self.page_index).rect
                self._size = (
                    int(round(rect.width * self.scale)),
                    int(round(rect.height * self.scale)),
                )
            finally:
                doc.close()
        return self._size

    def __repr__(self) -> str:
        return f"PdfPageImage(page={self.page_index}, scale={self.scale})"
