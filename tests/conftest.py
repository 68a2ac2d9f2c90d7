"""
Common pytest configuration, factories and fakes for all tests.

No test touches the network, a TTS model or a sound device: the
analyzer, narrator and TTS engine are replaced by the fakes below.
"""
import asyncio
import io
import struct
import sys
import wave
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to path so we can import modules correctly
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from comicbook.page.models import ComicBook, Page, TextRegion
from readaloud.analysis.analyzer import AnalysisError, BaseAnalyzer
from readaloud.tts.base_engine import BaseTTSEngine, NarrationError
from readaloud.tts.narrator import BaseNarrator, NarrationRequest


# ------------------------------------------------------------------
# Factories
# ------------------------------------------------------------------


def make_region(region_id, box, text=None, order=None):
    """Region with *box* = (ymin, xmin, ymax, xmax) on the 0-1000 scale."""
    return TextRegion(
        id=region_id,
        text=text if text is not None else f"text of {region_id}",
        box=tuple(float(v) for v in box),
        order=order,
    )


def make_page(page_id, regions=None, analyzed=None):
    """
    Page with an in-memory image.  Passing *regions* marks it analyzed
    unless *analyzed* says otherwise.
    """
    page = Page(id=page_id, filename=page_id, image=FakeImage(), width=800, height=1200)
    if analyzed is None:
        analyzed = regions is not None
    if analyzed:
        page.mark_analyzed(regions or [])
    return page


def make_book(*pages):
    return ComicBook(list(pages), source="test.cbz")


def make_wav(duration=0.1, sample_rate=24000, amplitude=3000):
    """Mono 16-bit WAV of a square-ish tone."""
    n = int(duration * sample_rate)
    frames = b"".join(
        struct.pack("<h", amplitude if (i // 20) % 2 else -amplitude) for i in range(n)
    )
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(frames)
    return buf.getvalue()


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeImage:
    mime_type = "image/png"

    def __init__(self, data=b"\x89PNG fake"):
        self.data = data

    def read_bytes(self):
        return self.data


class BrokenImage(FakeImage):
    """Image whose archive member cannot be read."""

    def read_bytes(self):
        raise zipfile.BadZipFile("Bad CRC-32 for file")


class FakeNarrator(BaseNarrator):
    """
    Records requests; completion is delivered by the test via
    :meth:`finish`, mirroring an asynchronous narrator.
    """

    def __init__(self):
        self.requests: List[NarrationRequest] = []
        self.cancelled = 0
        self._pending: Optional[tuple] = None

    def speak(self, request, on_done):
        self.requests.append(request)
        self._pending = (request, on_done)

    def cancel(self):
        self.cancelled += 1
        self._pending = None

    @property
    def current(self) -> Optional[NarrationRequest]:
        return self._pending[0] if self._pending else None

    @property
    def spoken_ids(self) -> List[str]:
        return [r.block_id for r in self.requests]

    def finish(self):
        """Complete the outstanding request."""
        request, on_done = self._pending
        self._pending = None
        on_done()
        return request


class InstantNarrator(BaseNarrator):
    """Completes every request on the next loop iteration."""

    def __init__(self):
        self.requests: List[NarrationRequest] = []
        self._handle = None

    def speak(self, request, on_done):
        self.requests.append(request)
        self._handle = asyncio.get_running_loop().call_soon(on_done)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class FakeAnalyzer(BaseAnalyzer):
    """
    Returns canned regions per page id.  Page ids listed in *failing*
    raise :class:`AnalysisError`, ids in *crashing* raise a plain
    ``RuntimeError``; ids in *gated* wait for :meth:`release`.
    """

    def __init__(
        self, results: Dict[str, List[TextRegion]] = None, failing=(), crashing=(), gated=()
    ):
        self.results = results or {}
        self.failing = set(failing)
        self.crashing = set(crashing)
        self.calls: List[str] = []
        self._gates = {page_id: asyncio.Event() for page_id in gated}

    @property
    def analyzer_name(self):
        return "Fake"

    async def analyze(self, page):
        self.calls.append(page.id)
        gate = self._gates.get(page.id)
        if gate is not None:
            await gate.wait()
        if page.id in self.failing:
            raise AnalysisError(f"boom on {page.id}")
        if page.id in self.crashing:
            raise RuntimeError(f"unexpected crash on {page.id}")
        return list(self.results.get(page.id, []))

    def release(self, page_id):
        self._gates[page_id].set()


class FakeEngine(BaseTTSEngine):
    """Produces a short tone per call; raises for texts in *failing*."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    @property
    def sample_rate(self):
        return 24000

    @property
    def sample_width(self):
        return 2

    @property
    def channels(self):
        return 1

    @property
    def engine_name(self):
        return "Fake"

    def synthesize(self, text, speed_factor=1.0, voice=None):
        self.calls.append((text, speed_factor, voice))
        if text in self.failing:
            raise NarrationError(f"cannot say {text!r}")
        return make_wav(0.05)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def narrator():
    return FakeNarrator()


@pytest.fixture
def two_page_book():
    """Page 1 analyzed with two regions, page 2 unanalyzed."""
    page1 = make_page(
        "001.jpg",
        [
            make_region("p1a", (100, 600, 150, 900), order=1),
            make_region("p1b", (400, 100, 450, 300), order=2),
        ],
    )
    page2 = make_page("002.jpg")
    return make_book(page1, page2)
