"""
Comic page source: CBZ/ZIP archives and PDF files.

Opens a comic file and produces an ordered :class:`ComicBook` of
unanalyzed pages.  Archive members are ordered with a natural,
case-insensitive sort so ``page2.jpg`` comes before ``page10.jpg``.
"""

import logging
import re
import zipfile
from pathlib import Path
from typing import List, Tuple, Union

import fitz  # PyMuPDF
from PIL import UnidentifiedImageError

from comicbook.page.models import ComicBook, Page
from comicbook.page.page_image import ArchivePageImage, PdfPageImage

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
ARCHIVE_EXTENSIONS = (".cbz", ".zip")
PDF_EXTENSIONS = (".pdf",)

# Render scale for PDF comics (2.0 ≈ 144 dpi)
DEFAULT_PDF_SCALE = 2.0

_RE_DIGITS = re.compile(r"(\d+)")


class ComicLoadError(RuntimeError):
    """The comic file is missing, unsupported, or unreadable."""


def natural_sort_key(name: str) -> Tuple:
    """
    Sort key comparing digit runs numerically and text case-insensitively.

    ``"Page10.png"`` sorts as ``page``, ``10``, ``.png``; digit runs sort
    ahead of text at the same position.
    """
    parts = _RE_DIGITS.split(name)
    key = []
    for i, part in enumerate(parts):
        if i % 2:
            key.append((0, int(part), ""))
        elif part:
            key.append((1, 0, part.casefold()))
    return tuple(key)


def list_image_members(zf: zipfile.ZipFile) -> List[str]:
    """Return image member names of *zf* in reading order."""
    names = []
    for info in zf.infolist():
        if info.is_dir():
            continue
        name = info.filename
        if name.startswith("__MACOSX/"):
            continue
        if name.lower().endswith(IMAGE_EXTENSIONS):
            names.append(name)
    return sorted(names, key=natural_sort_key)


def _open_archive(path: Path) -> ComicBook:
    try:
        zf = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as e:
        raise ComicLoadError(f"Failed to open archive '{path}': {e}") from e

    pages: List[Page] = []
    with zf:
        members = list_image_members(zf)

    for member in members:
        image = ArchivePageImage(str(path), member)
        try:
            width, height = image.size()
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Skipping unreadable image %s: %s", member, e)
            continue
        pages.append(
            Page(
                id=member,
                filename=member,
                image=image,
                width=width,
                height=height,
            )
        )

    logger.info("Opened %s: %d pages", path.name, len(pages))
    return ComicBook(pages, source=str(path))


def _open_pdf(path: Path, scale: float) -> ComicBook:
    try:
        doc = fitz.open(str(path))
    except Exception as e:
        raise ComicLoadError(f"Failed to open PDF '{path}': {e}") from e

    pages: List[Page] = []
    try:
        for idx in range(doc.page_count):
            rect = doc.load_page(idx).rect
            name = f"page-{idx + 1:04d}.png"
            pages.append(
                Page(
                    id=name,
                    filename=name,
                    image=PdfPageImage(str(path), idx, scale=scale),
                    width=int(round(rect.width * scale)),
                    height=int(round(rect.height * scale)),
                )
            )
    finally:
        doc.close()

    logger.info("Opened %s: %d pages", path.name, len(pages))
    return ComicBook(pages, source=str(path))


def open_comic(
    path: Union[str, Path], pdf_scale: float = DEFAULT_PDF_SCALE
) -> ComicBook:
    """
    Open a comic file as an ordered, unanalyzed :class:`ComicBook`.

    Args:
        path:      ``.cbz``, ``.zip`` or ``.pdf`` file.
        pdf_scale: Render scale for PDF pages.

    Returns:
        ComicBook whose pages are in reading order.

    Raises:
        ComicLoadError: If the file does not exist, has an unsupported
                        extension, or cannot be read.
    """
    path = Path(path)
    if not path.exists():
        raise ComicLoadError(f"Comic file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in ARCHIVE_EXTENSIONS:
        return _open_archive(path)
    if suffix in PDF_EXTENSIONS:
        return _open_pdf(path, pdf_scale)
    raise ComicLoadError(
        f"Unsupported comic format '{suffix}'. "
        f"Use one of: {', '.join(ARCHIVE_EXTENSIONS + PDF_EXTENSIONS)}"
    )
