"""
Page models for comic narration.
Text regions, pages, and lazy page images.
"""

from .models import BOX_SCALE, ComicBook, Page, TextRegion
from .page_image import ArchivePageImage, PageImage, PdfPageImage

__all__ = [
    "BOX_SCALE",
    "ComicBook",
    "Page",
    "TextRegion",
    "PageImage",
    "ArchivePageImage",
    "PdfPageImage",
]
