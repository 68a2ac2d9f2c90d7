"""Reading modes and region sequencing."""

from .models import ROW_TOLERANCE, ReadingMode
from .sequencer import preview_reading_order, sequence_regions

__all__ = [
    "ROW_TOLERANCE",
    "ReadingMode",
    "sequence_regions",
    "preview_reading_order",
]
