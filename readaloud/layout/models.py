"""
Reading-mode definitions for region sequencing.

ReadingMode selects the traversal policy the sequencer applies to a
page's text regions.
"""

from enum import Enum

# Two regions whose vertical centers differ by less than this (on the
# 0-1000 scale) are treated as sitting on the same row in MANGA mode.
ROW_TOLERANCE = 20.0


class ReadingMode(Enum):
    """Linear traversal order for the regions on a page."""

    WEBTOON = "WEBTOON"  # top to bottom
    MANGA = "MANGA"  # rows top to bottom, right to left within a row

    @classmethod
    def parse(cls, value: str) -> "ReadingMode":
        """Look up a mode by name, case-insensitively."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown reading mode '{value}'. "
                f"Available: {[m.name.lower() for m in cls]}"
            ) from None

    def toggled(self) -> "ReadingMode":
        return ReadingMode.WEBTOON if self is ReadingMode.MANGA else ReadingMode.MANGA
