"""
Comic book page source and page models for ComiCast.
Archive/PDF extraction and page data only, no analysis or narration.
"""

from .document import ComicLoadError, natural_sort_key, open_comic
from .page import ComicBook, Page, PageImage, TextRegion

__all__ = [
    "open_comic",
    "natural_sort_key",
    "ComicLoadError",
    "ComicBook",
    "Page",
    "PageImage",
    "TextRegion",
]
