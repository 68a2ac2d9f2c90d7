"""Comic file readers (CBZ/ZIP archives and PDFs)."""

from .archive_reader import (
    ComicLoadError,
    list_image_members,
    natural_sort_key,
    open_comic,
)

__all__ = [
    "ComicLoadError",
    "list_image_members",
    "natural_sort_key",
    "open_comic",
]
