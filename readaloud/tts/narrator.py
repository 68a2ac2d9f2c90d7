"""
Narration collaborators for the playback driver.

A narrator accepts one :class:`NarrationRequest` at a time and calls
the supplied ``on_done`` callback when the block has been spoken.
Completion fires on synthesis failure too, so playback never stalls
on a bad block; it does not fire for cancelled requests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from readaloud.script.text_preprocessor import clean_text

from .audio_builder import AudioBuilder, Cue
from .base_engine import BaseTTSEngine
from .pitch_shift import pitch_shift_wav

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NarrationRequest:
    """One block to be spoken, with the reader's voice settings."""

    block_id: str
    text: str
    page_index: int
    block_index: int
    rate: float = 1.0
    pitch: float = 1.0
    voice: Optional[str] = None


class BaseNarrator(ABC):
    """Interface the playback driver dispatches narration through."""

    @abstractmethod
    def speak(self, request: NarrationRequest, on_done: Callable[[], None]) -> None:
        """
        Start narrating *request*, superseding anything still speaking.

        *on_done* is called exactly once when narration finishes or
        fails, and never if the request is cancelled first.
        """

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current narration (best effort)."""


class RecordingNarrator(BaseNarrator):
    """
    Narrates into an :class:`AudioBuilder` instead of a sound device.

    Synthesis runs in the event loop's default executor so page
    analysis keeps progressing while a block is being rendered; the
    completion callback is always delivered back on the loop.
    """

    def __init__(
        self,
        engine: BaseTTSEngine,
        builder: AudioBuilder,
        block_pause: float = 0.4,
        page_pause: float = 1.0,
    ):
        self.engine = engine
        self.builder = builder
        self.block_pause = block_pause
        self.page_pause = page_pause

        self._task: Optional[asyncio.Task] = None
        self._last_page: Optional[int] = None

        self.spoken = 0
        self.failed = 0

    @property
    def is_speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, request: NarrationRequest, on_done: Callable[[], None]) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._narrate(request, on_done))

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Narration cancelled")

    def _render(self, text: str, request: NarrationRequest) -> bytes:
        wav = self.engine.synthesize(text, speed_factor=request.rate, voice=request.voice)
        return pitch_shift_wav(wav, request.pitch)

    async def _narrate(
        self, request: NarrationRequest, on_done: Callable[[], None]
    ) -> None:
        text = clean_text(request.text)
        if text:
            loop = asyncio.get_running_loop()
            try:
                wav = await loop.run_in_executor(None, self._render, text, request)
            except Exception as e:
                self.failed += 1
                logger.warning(
                    "TTS failed on page %d block %d, skipping: %s",
                    request.page_index + 1,
                    request.block_index + 1,
                    e,
                )
            else:
                self._append(wav, text, request)
        else:
            logger.debug("Block %s has no speakable text", request.block_id)

        self._task = None
        on_done()

    def _append(self, wav: bytes, text: str, request: NarrationRequest) -> None:
        if self._last_page is not None and request.page_index != self._last_page:
            self.builder.add_silence(self.page_pause)
        self._last_page = request.page_index

        self.builder.add_speech(
            wav,
            cue=Cue(
                block_id=request.block_id,
                page_index=request.page_index,
                block_index=request.block_index,
                start=0.0,
                end=0.0,
                text=text,
            ),
        )
        self.builder.add_silence(self.block_pause)
        self.spoken += 1
        logger.debug(
            "[p%d #%d %.2fx] %s",
            request.page_index + 1,
            request.block_index + 1,
            request.rate,
            text[:65],
        )

    def __repr__(self) -> str:
        return (
            f"RecordingNarrator(engine={self.engine.engine_name}, "
            f"spoken={self.spoken}, failed={self.failed})"
        )
