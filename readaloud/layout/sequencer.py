"""
Orders a page's text regions into a reading sequence.

The output is a fresh list of regions tagged with their 1-based
``order``; the input regions are never modified.
"""

from functools import cmp_to_key
from typing import Iterable, List

from comicbook.page.models import ComicBook, TextRegion

from .models import ROW_TOLERANCE, ReadingMode


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _manga_compare(a: TextRegion, b: TextRegion) -> int:
    """
    Row-then-right-to-left comparison.

    Pairwise only: regions within ROW_TOLERANCE of each other compare by
    horizontal center (descending), everything else by vertical center.
    Row membership is not transitive across chains of regions.
    """
    diff_y = a.center_y - b.center_y
    if abs(diff_y) < ROW_TOLERANCE:
        return _sign(b.center_x - a.center_x)
    return _sign(diff_y)


def sequence_regions(
    regions: Iterable[TextRegion],
    mode: ReadingMode,
) -> List[TextRegion]:
    """
    Sort regions for *mode* and assign ``order = index + 1``.

    Args:
        regions: Regions of one page, in encounter order.
        mode:    Reading mode to apply.

    Returns:
        New TextRegion list in reading order.  Exact ties keep their
        encounter order (the sort is stable).
    """
    items = list(regions)

    if mode is ReadingMode.WEBTOON:
        ordered = sorted(items, key=lambda r: r.center_y)
    else:
        ordered = sorted(items, key=cmp_to_key(_manga_compare))

    return [region.with_order(i + 1) for i, region in enumerate(ordered)]


# -----------------------------------------------------------------
# Debug preview
# -----------------------------------------------------------------


def preview_reading_order(book: ComicBook, mode: ReadingMode) -> str:
    """
    Format the reading order of every analyzed page for review.

    Example output::

        [PAGE 1] 001.jpg (MANGA, 2 regions)
          #1 cy=125 cx=850 "Where are we going?"
          #2 cy=125 cx=150 "Home."
        [PAGE 2] 002.jpg (pending)
    """
    lines: List[str] = []

    for idx, page in enumerate(book):
        if not page.analyzed:
            lines.append(f"[PAGE {idx + 1}] {page.filename} (pending)")
            continue

        lines.append(
            f"[PAGE {idx + 1}] {page.filename} "
            f"({mode.name}, {len(page.regions)} regions)"
        )
        for region in page.regions:
            preview = region.text[:70].replace("\n", " ")
            lines.append(
                f"  #{region.order} cy={region.center_y:.0f} "
                f'cx={region.center_x:.0f} "{preview}"'
            )

    return "\n".join(lines)
