"""
Read-aloud playback state machine.

The driver walks the book block by block: it hands the current block to
the narrator, advances when the narrator reports completion, moves to
the next page at the end of a page, and waits on pages whose analysis
has not landed yet.

Everything that happens to the driver arrives as a plain method call
(an event):

* ``play`` / ``pause`` / ``toggle_play``: user transport controls
* ``narration_finished``: completion signal from the narrator
* ``tick``: periodic poll while waiting on analysis
* ``select_block``: the user clicked a block (seek and resume)
* ``set_reading_mode`` / ``toggle_reading_mode``: re-sequence pages
* ``view_page``: the user scrolled while paused

Each call runs to completion synchronously, so the driver can be tested
without timers or audio.
"""

import logging
from typing import Callable, List, Optional

from comicbook.page.models import ComicBook, TextRegion

from readaloud.layout.models import ReadingMode
from readaloud.layout.sequencer import sequence_regions
from readaloud.settings import ReaderSettings
from readaloud.tts.narrator import BaseNarrator, NarrationRequest

from .state import PlaybackState

logger = logging.getLogger(__name__)


class PlaybackDriver:
    """
    Idle/Playing state machine over a :class:`ComicBook`.

    Usage::

        driver = PlaybackDriver(book, narrator, settings)
        driver.add_listener(lambda state: print(state))
        driver.play()
        ...
        driver.tick()  # every poll interval
    """

    def __init__(
        self,
        book: ComicBook,
        narrator: BaseNarrator,
        settings: Optional[ReaderSettings] = None,
        reading_mode: Optional[ReadingMode] = None,
    ):
        self.book = book
        self.narrator = narrator
        self.settings = settings or ReaderSettings()
        self.state = PlaybackState()
        self._reading_mode = reading_mode or self.settings.default_reading_mode

        self._listeners: List[Callable[[PlaybackState], None]] = []
        self._page_listeners: List[Callable[[int], None]] = []

        self.blocks_dispatched = 0
        self.blocks_completed = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def reading_mode(self) -> ReadingMode:
        return self._reading_mode

    @property
    def playing(self) -> bool:
        return self.state.playing

    def add_listener(self, callback: Callable[[PlaybackState], None]) -> None:
        """Register *callback(state)*, fired after each state transition."""
        self._listeners.append(callback)

    def add_page_listener(self, callback: Callable[[int], None]) -> None:
        """
        Register *callback(page_index)*, fired when playback moves to
        another page so the display can scroll to it.
        """
        self._page_listeners.append(callback)

    def _key(self) -> tuple:
        s = self.state
        return (
            s.page_index,
            s.block_index,
            s.playing,
            s.active_block_id,
            s.waiting,
            self._reading_mode,
        )

    def _publish(self, before: tuple) -> None:
        if self._key() == before:
            return
        for callback in list(self._listeners):
            callback(self.state)

    def _enter_page(self, page_index: int) -> None:
        self.state.page_index = page_index
        self.state.block_index = 0
        for callback in list(self._page_listeners):
            callback(page_index)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def play(self) -> None:
        """Start or resume narration.  Ignored for an empty book."""
        if self.book.is_empty:
            logger.debug("Play requested with no pages, ignoring")
            return
        if self.state.playing:
            return
        before = self._key()
        self._start()
        self._publish(before)

    def pause(self) -> None:
        """Stop narration and keep the current position."""
        before = self._key()
        self._halt()
        self._publish(before)

    def toggle_play(self) -> None:
        if self.state.playing:
            self.pause()
        else:
            self.play()

    def _start(self) -> None:
        logger.info(
            "Playback started at page %d, block %d",
            self.state.page_index + 1,
            self.state.block_index + 1,
        )
        self.state.playing = True
        self.state.last_dispatched_id = None
        self._step()

    def _halt(self) -> None:
        if self.state.playing:
            logger.info("Playback paused at page %d", self.state.page_index + 1)
        self.state.playing = False
        self.state.waiting = False
        self.state.active_block_id = None
        self.state.last_dispatched_id = None
        self.narrator.cancel()

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def _step(self) -> None:
        """Advance until a block is dispatched, a wait begins, or playback ends."""
        while self.state.playing:
            page = self.book[self.state.page_index]

            if not page.analyzed:
                if not self.state.waiting:
                    logger.info(
                        "Waiting for analysis of page %d", self.state.page_index + 1
                    )
                self.state.waiting = True
                return
            self.state.waiting = False

            if self.state.block_index >= len(page.regions):
                next_index = self.state.page_index + 1
                if next_index < len(self.book):
                    logger.debug("Advancing to page %d", next_index + 1)
                    self._enter_page(next_index)
                    continue
                logger.info("Reached the end of the book")
                self._halt()
                return

            region = page.regions[self.state.block_index]
            if region.id == self.state.last_dispatched_id:
                return
            self._dispatch(region)
            return

    def _dispatch(self, region: TextRegion) -> None:
        self.state.active_block_id = region.id
        self.state.last_dispatched_id = region.id
        self.blocks_dispatched += 1
        request = NarrationRequest(
            block_id=region.id,
            text=region.text,
            page_index=self.state.page_index,
            block_index=self.state.block_index,
            rate=self.settings.rate,
            pitch=self.settings.pitch,
            voice=self.settings.voice,
        )
        self.narrator.speak(request, lambda: self.narration_finished(region.id))

    def tick(self) -> None:
        """Poll event: re-check a page that was not analyzed yet."""
        if not self.state.playing:
            return
        before = self._key()
        self._step()
        self._publish(before)

    def narration_finished(self, block_id: str) -> None:
        """
        Completion signal from the narrator.

        Ignored unless playing and *block_id* is the block last
        dispatched, so a late completion from a superseded narration
        cannot move the position.
        """
        if not self.state.playing or block_id != self.state.last_dispatched_id:
            logger.debug("Ignoring stale completion for block %s", block_id)
            return
        before = self._key()
        self.blocks_completed += 1
        self.state.block_index += 1
        self._step()
        self._publish(before)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def select_block(self, page_index: int, block_index: int) -> None:
        """
        Jump to a block chosen by the user and narrate from there.

        Narration in progress is cancelled first; playback always
        restarts at the chosen block.

        Raises:
            IndexError: If the page does not exist, is not analyzed,
                        or has no block at *block_index*.
        """
        if not 0 <= page_index < len(self.book):
            raise IndexError(f"Page index {page_index} out of range")
        page = self.book[page_index]
        if not 0 <= block_index < len(page.regions):
            raise IndexError(
                f"Block index {block_index} out of range for page {page_index + 1} "
                f"({len(page.regions)} blocks)"
            )

        before = self._key()
        self._halt()
        if page_index != self.state.page_index:
            self._enter_page(page_index)
        self.state.block_index = block_index
        self.state.active_block_id = page.regions[block_index].id
        logger.info("Jumped to page %d, block %d", page_index + 1, block_index + 1)
        self._start()
        self._publish(before)

    def select_region(self, page_index: int, region_id: str) -> None:
        """Like :meth:`select_block`, addressing the block by region id."""
        block_index = self.book[page_index].region_index(region_id)
        if block_index < 0:
            raise IndexError(f"Region {region_id} not on page {page_index + 1}")
        self.select_block(page_index, block_index)

    def view_page(self, page_index: int) -> bool:
        """
        The display scrolled to *page_index*.

        Only honored while paused, since narration owns the position
        while playing.

        Returns:
            True if the position moved.
        """
        if self.state.playing or page_index == self.state.page_index:
            return False
        if not 0 <= page_index < len(self.book):
            raise IndexError(f"Page index {page_index} out of range")
        before = self._key()
        self.state.page_index = page_index
        self.state.block_index = 0
        self._publish(before)
        return True

    # ------------------------------------------------------------------
    # Reading mode
    # ------------------------------------------------------------------

    def set_reading_mode(self, mode: ReadingMode) -> None:
        """
        Re-sequence every analyzed page for *mode*.

        The playback position is left alone: if playing, the current
        block index may now refer to a different region.
        """
        if mode is self._reading_mode:
            return
        before = self._key()
        self._reading_mode = mode
        resequenced = 0
        for page in self.book:
            if page.analyzed:
                page.replace_regions(sequence_regions(page.regions, mode))
                resequenced += 1
        logger.info("Reading mode %s: %d pages re-sequenced", mode.name, resequenced)
        self._publish(before)

    def toggle_reading_mode(self) -> ReadingMode:
        self.set_reading_mode(self._reading_mode.toggled())
        return self._reading_mode

    def __repr__(self) -> str:
        s = self.state
        return (
            f"PlaybackDriver(playing={s.playing}, page={s.page_index + 1}, "
            f"block={s.block_index + 1}, mode={self._reading_mode.name})"
        )
