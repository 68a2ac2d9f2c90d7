"""
Reader session: playback driver + analysis prefetch on one event loop.

The session is the glue a reader front end needs:

1. **Prefetch**: keeps the reading page and the next few pages
   analyzed, re-scheduling whenever playback moves.
2. **Playback**: owns the :class:`PlaybackDriver` and feeds it its
   timer events (the poll tick) and analysis arrivals.
3. **Observation**: publishes a :class:`ReaderSnapshot` to subscribers
   after every driver or analysis change.
4. **Export**: assembles the narrated audio into an MP3/WAV file plus
   a cue sheet.

Usage::

    from readaloud.session import ReaderSession, SessionConfig

    session = ReaderSession(book, analyzer, narrator, SessionConfig())
    result = asyncio.run(session.run())
    print(result.summary())
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Set

from tqdm import tqdm

from comicbook.page.models import ComicBook

from readaloud.analysis.analyzer import BaseAnalyzer
from readaloud.analysis.prefetch import PREFETCH_WINDOW, AnalysisPrefetcher
from readaloud.layout.models import ReadingMode
from readaloud.playback.driver import PlaybackDriver
from readaloud.playback.state import PlaybackState, ReaderSnapshot
from readaloud.settings import ReaderSettings
from readaloud.tts.audio_builder import AudioBuilder
from readaloud.tts.narrator import BaseNarrator

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------


@dataclass
class SessionConfig:
    """
    All tuneable parameters for a reading session.

    Attributes:
        rate:                  Speech rate multiplier.
        pitch:                 Pitch multiplier.
        voice:                 Voice identifier (``None`` for the engine default).
        reading_mode:          Initial reading mode.
        prefetch_window:       Pages kept analyzed from the reading position on.
        poll_interval:         Seconds between poll ticks while waiting on analysis.
        max_analysis_attempts: Failed requests before a page is skipped.
        block_pause:           Silence after each block (seconds).
        page_pause:            Extra silence between pages (seconds).
        mp3_bitrate:           Bitrate string for MP3 export.
        normalize_dBFS:        Target loudness for volume normalisation.
        crossfade_ms:          Fade duration to smooth track boundaries.
        enhance_audio:         Apply gentle compression and rumble removal.
        disable_tqdm:          Suppress progress bars.
    """

    rate: float = 1.0
    pitch: float = 1.0
    voice: Optional[str] = None
    reading_mode: ReadingMode = ReadingMode.MANGA

    prefetch_window: int = PREFETCH_WINDOW
    poll_interval: float = 1.0
    max_analysis_attempts: int = 2

    block_pause: float = 0.4
    page_pause: float = 1.0

    mp3_bitrate: str = "192k"
    normalize_dBFS: float = -20.0
    crossfade_ms: int = 30
    enhance_audio: bool = False

    disable_tqdm: bool = False

    @classmethod
    def from_settings(cls, settings: ReaderSettings, **overrides) -> "SessionConfig":
        """Start from stored reader settings, then apply *overrides*."""
        config = cls(
            rate=settings.rate,
            pitch=settings.pitch,
            voice=settings.voice,
            reading_mode=settings.default_reading_mode,
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    def reader_settings(self) -> ReaderSettings:
        return ReaderSettings(
            rate=self.rate,
            pitch=self.pitch,
            voice=self.voice,
            default_reading_mode=self.reading_mode,
        )


# ------------------------------------------------------------------
# Result
# ------------------------------------------------------------------


@dataclass
class SessionResult:
    """Summary returned after a session run."""

    output_path: str = ""
    total_pages: int = 0
    pages_visited: int = 0
    pages_skipped: int = 0
    blocks_narrated: int = 0
    failed_analyses: int = 0
    audio_duration: float = 0.0
    file_size_mb: float = 0.0
    elapsed_seconds: float = 0.0

    def summary(self) -> str:
        """Format a human-readable summary of the session."""
        return (
            f"{'=' * 60}\n"
            f"READING COMPLETE\n"
            f"{'=' * 60}\n"
            f"  Output:           {self.output_path or '(none)'}\n"
            f"  Pages:            {self.pages_visited} / {self.total_pages}"
            f" ({self.pages_skipped} skipped)\n"
            f"  Blocks narrated:  {self.blocks_narrated}\n"
            f"  Failed analyses:  {self.failed_analyses}\n"
            f"  Duration:         {self.audio_duration:.1f}s "
            f"({self.audio_duration / 60:.1f} min)\n"
            f"  File size:        {self.file_size_mb:.1f} MB\n"
            f"  Total wall time:  {self.elapsed_seconds:.1f}s\n"
            f"{'=' * 60}"
        )


# ------------------------------------------------------------------
# Session
# ------------------------------------------------------------------


class ReaderSession:
    """
    Runs read-aloud playback over a comic book.

    All callbacks (analysis arrivals, narration completions, the poll
    tick) run on the event loop that awaits :meth:`run`, so the driver
    and prefetcher are only ever touched from one thread.
    """

    def __init__(
        self,
        book: ComicBook,
        analyzer: BaseAnalyzer,
        narrator: BaseNarrator,
        config: Optional[SessionConfig] = None,
    ):
        self.book = book
        self.config = config or SessionConfig()
        self.narrator = narrator

        self.driver = PlaybackDriver(book, narrator, self.config.reader_settings())
        self.prefetcher = AnalysisPrefetcher(
            book,
            analyzer,
            mode_provider=lambda: self.driver.reading_mode,
            window=self.config.prefetch_window,
        )

        self._subscribers: List[Callable[[ReaderSnapshot], None]] = []
        self._visited: Set[int] = set()
        self._stop_after: Optional[int] = None
        self._idle: Optional[asyncio.Event] = None
        self._pbar: Optional[tqdm] = None
        self.pages_skipped = 0

        self.driver.add_listener(self._on_driver_change)
        self.driver.add_page_listener(self._on_page_entered)
        self.prefetcher.add_listener(self._on_analysis_change)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def snapshot(self) -> ReaderSnapshot:
        s = self.driver.state
        return ReaderSnapshot(
            page_index=s.page_index,
            block_index=s.block_index,
            active_block_id=s.active_block_id,
            playing=s.playing,
            waiting=s.waiting,
            reading_mode=self.driver.reading_mode,
            analyzed=tuple(p.analyzed for p in self.book),
            in_flight=tuple(self.prefetcher.is_in_flight(p.id) for p in self.book),
        )

    def subscribe(self, callback: Callable[[ReaderSnapshot], None]) -> None:
        """Register *callback(snapshot)*, fired after every change."""
        self._subscribers.append(callback)

    def _publish(self) -> None:
        if not self._subscribers:
            return
        snap = self.snapshot()
        for callback in list(self._subscribers):
            callback(snap)

    # ------------------------------------------------------------------
    # Change handlers
    # ------------------------------------------------------------------

    def _on_driver_change(self, state: PlaybackState) -> None:
        self._publish()
        if not state.playing and self._idle is not None:
            self._idle.set()

    def _on_page_entered(self, page_index: int) -> None:
        if self._stop_after is not None and page_index > self._stop_after:
            logger.info("Passed page %d, stopping", self._stop_after + 1)
            self.driver.pause()
            return
        self._mark_visited(page_index)
        self.prefetcher.schedule(page_index)

    def _on_analysis_change(self, page_index: int) -> None:
        self._publish()
        state = self.driver.state
        if state.waiting and page_index == state.page_index:
            if self.book[page_index].analyzed:
                self.driver.tick()

    def _mark_visited(self, page_index: int) -> None:
        if page_index in self._visited:
            return
        self._visited.add(page_index)
        if self._pbar is not None:
            self._pbar.update(1)
            self._pbar.set_postfix(page=f"{page_index + 1}/{len(self.book)}")

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            self.poll_once()

    def poll_once(self) -> None:
        """
        One poll tick while playing: give up on a page whose analysis
        keeps failing, retry the prefetch window, and let a waiting
        driver re-check.
        """
        state = self.driver.state
        if not state.playing:
            return
        if state.waiting:
            page = self.book[state.page_index]
            attempts = self.prefetcher.failed_attempts(page.id)
            if (
                not self.prefetcher.is_in_flight(page.id)
                and attempts >= self.config.max_analysis_attempts
            ):
                self._skip_page(state.page_index, attempts)
                return
        self.prefetcher.schedule(self.driver.state.page_index)
        self.driver.tick()

    def _skip_page(self, page_index: int, attempts: int) -> None:
        logger.error(
            "Giving up on page %d after %d failed analyses",
            page_index + 1,
            attempts,
        )
        self.pages_skipped += 1
        self.driver.pause()
        next_index = page_index + 1
        if next_index >= len(self.book):
            return
        if self._stop_after is not None and next_index > self._stop_after:
            return
        self.driver.view_page(next_index)
        self._mark_visited(next_index)
        self.prefetcher.schedule(next_index)
        self.driver.play()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self, start_page: int = 0, stop_after_page: Optional[int] = None
    ) -> SessionResult:
        """
        Play from *start_page* until playback goes idle.

        Playback stops at the end of the book, or when it moves past
        *stop_after_page* (0-based, inclusive).

        Returns:
            :class:`SessionResult` with page and block counts.
        """
        t0 = time.perf_counter()
        result = SessionResult(total_pages=len(self.book))

        if self.book.is_empty:
            logger.warning("Book has no pages, nothing to read")
            return result
        if not 0 <= start_page < len(self.book):
            raise IndexError(f"Start page {start_page + 1} out of range")

        last = len(self.book) - 1
        if stop_after_page is not None:
            if stop_after_page < start_page:
                raise ValueError("stop_after_page is before start_page")
            last = min(stop_after_page, last)
        self._stop_after = last

        self._idle = asyncio.Event()
        self.driver.view_page(start_page)
        self.prefetcher.schedule(start_page)
        poll = asyncio.ensure_future(self._poll())

        self._pbar = tqdm(
            total=last - start_page + 1,
            desc="Reading",
            unit="page",
            disable=self.config.disable_tqdm,
        )
        self._mark_visited(start_page)
        try:
            self.driver.play()
            while self.driver.playing:
                self._idle.clear()
                await self._idle.wait()
        finally:
            poll.cancel()
            self.driver.pause()
            self._pbar.close()
            self._pbar = None
            self._idle = None

        result.pages_visited = len(self._visited)
        result.pages_skipped = self.pages_skipped
        result.blocks_narrated = self.driver.blocks_completed
        result.failed_analyses = self.prefetcher.failures
        result.elapsed_seconds = time.perf_counter() - t0
        logger.info(
            "Session finished: %d pages, %d blocks in %.1fs",
            result.pages_visited,
            result.blocks_narrated,
            result.elapsed_seconds,
        )
        return result

    async def analyze_range(self, start: int, end: int) -> int:
        """
        Analyze pages *start*..*end* (0-based, inclusive) without playing,
        a window of pages at a time.

        Returns:
            Number of pages in the range that ended up analyzed.
        """
        end = min(end, len(self.book) - 1)
        indices = list(range(start, end + 1))
        window = max(1, self.config.prefetch_window)

        pbar = tqdm(
            total=len(indices),
            desc="Analyzing",
            unit="page",
            disable=self.config.disable_tqdm,
        )
        analyzed = 0
        try:
            for i in range(0, len(indices), window):
                batch = indices[i : i + window]
                outcomes = await asyncio.gather(
                    *(self.prefetcher.analyze_page(idx) for idx in batch)
                )
                analyzed += sum(1 for ok in outcomes if ok)
                pbar.update(len(batch))
        finally:
            pbar.close()

        logger.info("Analyzed %d / %d pages", analyzed, len(indices))
        return analyzed

    # ------------------------------------------------------------------
    # Reader controls
    # ------------------------------------------------------------------

    def toggle_reading_mode(self) -> ReadingMode:
        return self.driver.toggle_reading_mode()

    def select_block(self, page_index: int, block_index: int) -> None:
        self.driver.select_block(page_index, block_index)
        self.prefetcher.schedule(page_index)

    def __repr__(self) -> str:
        return f"ReaderSession(pages={len(self.book)}, {self.driver!r})"


# ------------------------------------------------------------------
# Export
# ------------------------------------------------------------------


def export_audio(
    builder: AudioBuilder,
    output_path: str,
    config: SessionConfig,
    result: SessionResult,
    write_cues: bool = True,
) -> SessionResult:
    """
    Normalise, crossfade, and export narrated audio.

    A JSON cue sheet (block id to time span) is written next to the
    audio as ``<output>.cues.json``.

    Returns:
        Updated :class:`SessionResult` with duration and file size.
    """
    if builder.is_empty:
        logger.warning("No audio produced, nothing to export")
        return result

    if config.enhance_audio:
        builder.enhance()
    builder.normalize(target_dBFS=config.normalize_dBFS)
    builder.apply_crossfade(ms=config.crossfade_ms)

    if output_path.lower().endswith(".wav"):
        builder.export_wav(output_path)
    else:
        builder.export_mp3(output_path, bitrate=config.mp3_bitrate)

    if write_cues:
        builder.export_cues(str(Path(output_path).with_suffix(".cues.json")))

    result.output_path = output_path
    result.audio_duration = builder.get_duration()
    out = Path(output_path)
    if out.exists():
        result.file_size_mb = out.stat().st_size / (1024 * 1024)
    return result
