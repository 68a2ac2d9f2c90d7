"""
Look-ahead page analysis.

Keeps the current page and the next few pages analyzed so narration
rarely stalls on the remote analyzer.  Requests run as asyncio tasks on
the session's event loop; the in-flight set stops the same page from
being requested twice while a request is outstanding.
"""

import asyncio
import logging
from typing import Callable, Dict, FrozenSet, List, Set

from comicbook.page.models import ComicBook

from readaloud.layout.models import ReadingMode
from readaloud.layout.sequencer import sequence_regions

from .analyzer import AnalysisError, BaseAnalyzer

logger = logging.getLogger(__name__)

# Pages analyzed ahead of (and including) the reading position
PREFETCH_WINDOW = 3


class AnalysisPrefetcher:
    """
    Schedules analysis for a sliding window of pages.

    The reading mode is read through *mode_provider* when a result
    lands, so a page finishing after a mode toggle is sequenced with
    the new mode.
    """

    def __init__(
        self,
        book: ComicBook,
        analyzer: BaseAnalyzer,
        mode_provider: Callable[[], ReadingMode],
        window: int = PREFETCH_WINDOW,
    ):
        self.book = book
        self.analyzer = analyzer
        self.window = window
        self._mode_provider = mode_provider
        self._in_flight: Set[str] = set()
        self._listeners: List[Callable[[int], None]] = []
        self._attempts: Dict[str, int] = {}

        self.failures = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[int], None]) -> None:
        """Register *callback(page_index)*, fired when a page's state changes."""
        self._listeners.append(callback)

    def _notify(self, page_index: int) -> None:
        for callback in list(self._listeners):
            callback(page_index)

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)

    def is_in_flight(self, page_id: str) -> bool:
        return page_id in self._in_flight

    def failed_attempts(self, page_id: str) -> int:
        """Number of failed analysis requests for *page_id* so far."""
        return self._attempts.get(page_id, 0)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def pending_indices(self, current_index: int) -> List[int]:
        """Indices in the window that still need a request."""
        indices = []
        for offset in range(self.window):
            idx = current_index + offset
            if idx < 0 or idx >= len(self.book):
                continue
            page = self.book[idx]
            if not page.analyzed and page.id not in self._in_flight:
                indices.append(idx)
        return indices

    def schedule(self, current_index: int) -> List[asyncio.Task]:
        """
        Start analysis for every page in the window around *current_index*
        that is neither analyzed nor in flight.

        Must be called from inside the running event loop.

        Returns:
            The tasks created (empty if nothing needed a request).
        """
        tasks = []
        for idx in self.pending_indices(current_index):
            # Claim the page now so a second schedule() before the task
            # starts does not request it again
            self._in_flight.add(self.book[idx].id)
            tasks.append(asyncio.ensure_future(self._run(idx)))
        return tasks

    async def analyze_page(self, page_index: int) -> bool:
        """
        Analyze a single page unless it is analyzed or already in flight.

        Also serves as the manual "analyze this page" trigger.

        Returns:
            True if the page is analyzed when the call returns.
        """
        page = self.book[page_index]
        if page.analyzed:
            return True
        if page.id in self._in_flight:
            return False
        self._in_flight.add(page.id)
        return await self._run(page_index)

    async def _run(self, page_index: int) -> bool:
        page = self.book[page_index]
        self._notify(page_index)
        try:
            raw = await self.analyzer.analyze(page)
            mode = self._mode_provider()
            page.mark_analyzed(sequence_regions(raw, mode))
            logger.info(
                "Analyzed page %d (%s): %d regions",
                page_index + 1,
                page.filename,
                len(page.regions),
            )
        except AnalysisError as e:
            self._record_failure(page)
            logger.warning("Analysis failed for page %d: %s", page_index + 1, e)
        except Exception as e:
            self._record_failure(page)
            logger.error(
                "Unexpected analysis error for page %d: %s",
                page_index + 1,
                e,
                exc_info=True,
            )
        finally:
            self._in_flight.discard(page.id)
            self._notify(page_index)
        return page.analyzed

    def _record_failure(self, page) -> None:
        self.failures += 1
        self._attempts[page.id] = self._attempts.get(page.id, 0) + 1

    def __repr__(self) -> str:
        return (
            f"AnalysisPrefetcher(window={self.window}, "
            f"in_flight={len(self._in_flight)}, failures={self.failures})"
        )
