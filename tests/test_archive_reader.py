"""
Unit tests for the comic page source.

Archives and PDFs are built on the fly in ``tmp_path`` with Pillow and
PyMuPDF, so no fixture files are needed.
"""
import io
import zipfile

import fitz  # PyMuPDF
import pytest
from PIL import Image

from comicbook.document.archive_reader import (
    ComicLoadError,
    natural_sort_key,
    open_comic,
)
from comicbook.page.page_image import ArchivePageImage, PdfPageImage


def _image_bytes(size=(40, 60), fmt="PNG"):
    buf = io.BytesIO()
    Image.new("RGB", size, "white").save(buf, format=fmt)
    return buf.getvalue()


def _write_zip(path, members):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def test_natural_sort_key_orders_numbers_numerically():
    names = ["page10.png", "Page2.png", "page1.png", "cover.jpg", "001.jpg"]

    assert sorted(names, key=natural_sort_key) == [
        "001.jpg",
        "cover.jpg",
        "page1.png",
        "Page2.png",
        "page10.png",
    ]


def test_open_cbz_filters_and_sorts_members(tmp_path):
    png = _image_bytes()
    path = _write_zip(
        tmp_path / "issue.cbz",
        {
            "chapter/page10.png": png,
            "chapter/page2.PNG": png,
            "chapter/page1.jpg": _image_bytes(fmt="JPEG"),
            "chapter/notes.txt": b"not an image",
            "__MACOSX/chapter/._page1.jpg": b"resource fork",
        },
    )

    book = open_comic(path)

    assert [p.id for p in book] == [
        "chapter/page1.jpg",
        "chapter/page2.PNG",
        "chapter/page10.png",
    ]
    assert book.source == str(path)
    first = book[0]
    assert (first.width, first.height) == (40, 60)
    assert not first.analyzed
    assert isinstance(first.image, ArchivePageImage)
    assert first.image.mime_type == "image/jpeg"
    assert book[1].image.mime_type == "image/png"


def test_unreadable_member_is_skipped(tmp_path):
    path = _write_zip(
        tmp_path / "issue.zip",
        {"01.png": _image_bytes(), "02.png": b"corrupt"},
    )

    book = open_comic(path)

    assert [p.id for p in book] == ["01.png"]


def test_archive_image_bytes_round_trip(tmp_path):
    png = _image_bytes(size=(8, 8))
    path = _write_zip(tmp_path / "issue.cbz", {"01.png": png})

    page = open_comic(path)[0]

    assert page.image.read_bytes() == png
    assert page.image.load().size == (8, 8)


def test_open_pdf_pages(tmp_path):
    path = tmp_path / "issue.pdf"
    doc = fitz.open()
    doc.new_page(width=100, height=150)
    doc.new_page(width=100, height=150)
    doc.save(str(path))
    doc.close()

    book = open_comic(path, pdf_scale=2.0)

    assert [p.id for p in book] == ["page-0001.png", "page-0002.png"]
    page = book[1]
    assert (page.width, page.height) == (200, 300)
    assert isinstance(page.image, PdfPageImage)
    data = page.image.read_bytes()
    assert data.startswith(b"\x89PNG")
    assert page.image.size() == (200, 300)


def test_missing_file(tmp_path):
    with pytest.raises(ComicLoadError):
        open_comic(tmp_path / "nope.cbz")


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "issue.rar"
    path.write_bytes(b"whatever")

    with pytest.raises(ComicLoadError) as exc_info:
        open_comic(path)

    assert ".rar" in str(exc_info.value)


def test_bad_zip(tmp_path):
    path = tmp_path / "issue.cbz"
    path.write_bytes(b"not a zip")

    with pytest.raises(ComicLoadError):
        open_comic(path)
