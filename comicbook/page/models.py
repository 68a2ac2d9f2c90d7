"""
Page and text-region data models for comic books.

Bounding boxes use the normalized ``(ymin, xmin, ymax, xmax)`` convention
on a 0–1000 scale, independent of the page's pixel dimensions.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, List, Optional, Tuple

# Upper bound of the normalized coordinate scale
BOX_SCALE = 1000.0


@dataclass(frozen=True)
class TextRegion:
    """A detected text area (speech bubble, caption box) on a page."""

    id: str
    text: str
    box: Tuple[float, float, float, float]  # ymin, xmin, ymax, xmax (0-1000)

    # 1-based reading position, assigned by the sequencer
    order: Optional[int] = None

    def __post_init__(self):
        if len(self.box) != 4:
            raise ValueError(f"Region {self.id}: box must have 4 coordinates")
        ymin, xmin, ymax, xmax = self.box
        if ymin > ymax or xmin > xmax:
            raise ValueError(
                f"Region {self.id}: inverted box {tuple(self.box)} "
                "(expected ymin <= ymax and xmin <= xmax)"
            )

    @property
    def ymin(self) -> float:
        return self.box[0]

    @property
    def xmin(self) -> float:
        return self.box[1]

    @property
    def ymax(self) -> float:
        return self.box[2]

    @property
    def xmax(self) -> float:
        return self.box[3]

    @property
    def center_y(self) -> float:
        return (self.box[0] + self.box[2]) / 2

    @property
    def center_x(self) -> float:
        return (self.box[1] + self.box[3]) / 2

    def with_order(self, order: int) -> "TextRegion":
        """Return a copy carrying *order*."""
        return replace(self, order=order)

    def contains_point(self, y: float, x: float) -> bool:
        """Check if a normalized point falls inside the box."""
        return self.box[0] <= y <= self.box[2] and self.box[1] <= x <= self.box[3]

    def __repr__(self) -> str:
        preview = self.text[:40].replace("\n", " ")
        tag = f"#{self.order} " if self.order is not None else ""
        return (
            f"TextRegion({tag}cy={self.center_y:.0f}, cx={self.center_x:.0f}, "
            f"'{preview}')"
        )


@dataclass
class Page:
    """
    One page of a comic book.

    Pages start unanalyzed with no regions.  The region tuple is only
    ever swapped as a whole, never edited in place.
    """

    id: str
    filename: str
    image: object  # PageImage (see page_image.py)
    width: int = 0
    height: int = 0
    analyzed: bool = False
    regions: Tuple[TextRegion, ...] = field(default_factory=tuple)

    def mark_analyzed(self, regions: Iterable[TextRegion]) -> None:
        """Store the sequenced analysis result and flag the page analyzed."""
        self.regions = tuple(regions)
        self.analyzed = True

    def replace_regions(self, regions: Iterable[TextRegion]) -> None:
        """Swap in a re-sequenced region list for an analyzed page."""
        if not self.analyzed:
            raise ValueError(f"Page {self.id} has not been analyzed")
        self.regions = tuple(regions)

    def region_index(self, region_id: str) -> int:
        """Return the position of *region_id*, or -1 if absent."""
        for i, region in enumerate(self.regions):
            if region.id == region_id:
                return i
        return -1

    @property
    def region_count(self) -> int:
        return len(self.regions)

    def __repr__(self) -> str:
        state = f"{len(self.regions)} regions" if self.analyzed else "pending"
        return f"Page('{self.id}', {self.width}x{self.height}, {state})"


class ComicBook:
    """Ordered page collection produced by the page source."""

    def __init__(self, pages: List[Page], source: str = ""):
        self.pages = pages
        self.source = source

    def __len__(self) -> int:
        return len(self.pages)

    def __getitem__(self, index: int) -> Page:
        return self.pages[index]

    def __iter__(self) -> Iterator[Page]:
        return iter(self.pages)

    @property
    def is_empty(self) -> bool:
        return not self.pages

    @property
    def analyzed_count(self) -> int:
        return sum(1 for p in self.pages if p.analyzed)

    def find_page(self, page_id: str) -> int:
        """Return the index of *page_id*, or -1 if absent."""
        for i, page in enumerate(self.pages):
            if page.id == page_id:
                return i
        return -1

    def __repr__(self) -> str:
        return (
            f"ComicBook('{self.source}', pages={len(self.pages)}, "
            f"analyzed={self.analyzed_count})"
        )
