"""
Integration tests for the reader session.

Driver, prefetcher and poll task run together on one event loop with a
FakeAnalyzer and a narrator that completes every block immediately.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import (
    BrokenImage,
    FakeAnalyzer,
    FakeEngine,
    InstantNarrator,
    make_book,
    make_page,
    make_region,
    make_wav,
)
from readaloud.analysis.analyzer import GeminiAnalyzer
from readaloud.layout.models import ReadingMode
from readaloud.session import ReaderSession, SessionConfig, SessionResult, export_audio
from readaloud.tts.audio_builder import AudioBuilder, Cue
from readaloud.tts.narrator import RecordingNarrator


def _config(**kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("disable_tqdm", True)
    return SessionConfig(**kwargs)


def _book_and_results(page_count, blocks_per_page=2):
    pages = [make_page(f"{i + 1:03d}.jpg") for i in range(page_count)]
    results = {
        page.id: [
            make_region(f"p{i + 1}b{j + 1}", (100 * j, 0, 100 * j + 50, 100))
            for j in range(blocks_per_page)
        ]
        for i, page in enumerate(pages)
    }
    return make_book(*pages), results


def _run(session, *args, **kwargs):
    return asyncio.run(asyncio.wait_for(session.run(*args, **kwargs), timeout=10))


def test_reads_whole_book_in_order():
    book, results = _book_and_results(4)
    narrator = InstantNarrator()
    session = ReaderSession(book, FakeAnalyzer(results), narrator, _config())

    result = _run(session)

    assert [r.block_id for r in narrator.requests] == [
        f"p{p}b{b}" for p in range(1, 5) for b in range(1, 3)
    ]
    assert result.pages_visited == 4
    assert result.blocks_narrated == 8
    assert result.failed_analyses == 0
    assert not session.driver.state.playing


def test_stops_after_requested_page():
    book, results = _book_and_results(5)
    narrator = InstantNarrator()
    session = ReaderSession(book, FakeAnalyzer(results), narrator, _config())

    result = _run(session, start_page=1, stop_after_page=2)

    assert [r.block_id for r in narrator.requests] == ["p2b1", "p2b2", "p3b1", "p3b2"]
    assert result.pages_visited == 2
    assert result.total_pages == 5


def test_prefetch_stays_ahead_of_reading():
    book, results = _book_and_results(6, blocks_per_page=1)
    analyzer = FakeAnalyzer(results)
    session = ReaderSession(book, analyzer, InstantNarrator(), _config())

    _run(session, stop_after_page=1)

    # Pages 1-2 were read; the window around page 2 reaches page 4
    assert set(analyzer.calls) <= {"001.jpg", "002.jpg", "003.jpg", "004.jpg"}
    assert {"001.jpg", "002.jpg"} <= set(analyzer.calls)


def test_waiting_driver_resumes_when_page_lands():
    book, results = _book_and_results(1)
    analyzer = FakeAnalyzer(results, gated=["001.jpg"])
    narrator = InstantNarrator()
    session = ReaderSession(book, analyzer, narrator, _config(poll_interval=60))
    snapshots = []
    session.subscribe(snapshots.append)

    async def scenario():
        task = asyncio.ensure_future(session.run())
        await asyncio.sleep(0.05)
        assert session.driver.state.waiting
        assert narrator.requests == []
        analyzer.release("001.jpg")
        return await asyncio.wait_for(task, timeout=5)

    result = asyncio.run(scenario())

    assert result.blocks_narrated == 2
    assert any(s.waiting and s.in_flight == (True,) for s in snapshots)
    assert snapshots[-1].playing is False
    assert snapshots[-1].analyzed == (True,)


def test_failing_page_is_skipped():
    book, results = _book_and_results(3, blocks_per_page=1)
    analyzer = FakeAnalyzer(results, failing=["002.jpg"])
    narrator = InstantNarrator()
    session = ReaderSession(book, analyzer, narrator, _config(max_analysis_attempts=2))

    result = _run(session)

    assert [r.block_id for r in narrator.requests] == ["p1b1", "p3b1"]
    assert result.pages_skipped == 1
    assert result.failed_analyses >= 2
    assert result.pages_visited == 3
    assert not book[1].analyzed


def test_unreadable_page_image_is_skipped():
    book, _ = _book_and_results(3, blocks_per_page=1)
    book[1].image = BrokenImage()
    client = MagicMock()
    response = MagicMock()
    response.text = json.dumps({"bubbles": [{"text": "Hello!", "box_2d": [0, 0, 100, 100]}]})
    client.aio.models.generate_content = AsyncMock(return_value=response)
    narrator = InstantNarrator()
    session = ReaderSession(
        book, GeminiAnalyzer(client=client), narrator, _config(max_analysis_attempts=2)
    )

    result = _run(session)

    assert [r.page_index for r in narrator.requests] == [0, 2]
    assert result.pages_skipped == 1
    assert session.prefetcher.failed_attempts(book[1].id) >= 2
    assert not book[1].analyzed


def test_crashing_analyzer_does_not_stall_playback():
    book, results = _book_and_results(2, blocks_per_page=1)
    analyzer = FakeAnalyzer(results, crashing=["002.jpg"])
    narrator = InstantNarrator()
    session = ReaderSession(book, analyzer, narrator, _config(max_analysis_attempts=2))

    result = _run(session)

    assert [r.block_id for r in narrator.requests] == ["p1b1"]
    assert result.pages_skipped == 1
    assert not session.driver.state.playing


def test_reading_mode_applies_to_analysis_results():
    page = make_page("001.jpg")
    results = {
        "001.jpg": [
            # Same MANGA row, but "left" sits slightly higher
            make_region("left", (80, 0, 120, 100)),
            make_region("right", (90, 800, 130, 900)),
        ]
    }
    narrator = InstantNarrator()
    session = ReaderSession(
        make_book(page), FakeAnalyzer(results), narrator,
        _config(reading_mode=ReadingMode.MANGA),
    )

    _run(session)

    assert [r.block_id for r in narrator.requests] == ["right", "left"]
    assert session.toggle_reading_mode() is ReadingMode.WEBTOON
    assert [r.id for r in page.regions] == ["left", "right"]


def test_empty_book():
    session = ReaderSession(make_book(), FakeAnalyzer(), InstantNarrator(), _config())

    result = _run(session)

    assert result.pages_visited == 0
    assert result.blocks_narrated == 0


def test_bad_start_page():
    book, results = _book_and_results(2)
    session = ReaderSession(book, FakeAnalyzer(results), InstantNarrator(), _config())

    with pytest.raises(IndexError):
        _run(session, start_page=5)


def test_analyze_range_and_snapshot():
    book, results = _book_and_results(5)
    analyzer = FakeAnalyzer(results, failing=["003.jpg"])
    session = ReaderSession(book, analyzer, InstantNarrator(), _config(prefetch_window=2))

    analyzed = asyncio.run(session.analyze_range(0, 3))

    assert analyzed == 3
    assert session.snapshot().analyzed == (True, True, False, True, False)
    assert session.snapshot().in_flight == (False,) * 5
    assert not session.driver.state.playing


def test_end_to_end_with_recording_narrator(tmp_path):
    book, results = _book_and_results(2)
    engine = FakeEngine()
    builder = AudioBuilder(sample_rate=engine.sample_rate)
    narrator = RecordingNarrator(engine, builder, block_pause=0.1, page_pause=0.2)
    config = _config()
    session = ReaderSession(book, FakeAnalyzer(results), narrator, config)

    result = _run(session)
    out = tmp_path / "book.wav"
    result = export_audio(builder, str(out), config, result)

    assert narrator.spoken == 4
    assert out.exists()
    assert (tmp_path / "book.cues.json").exists()
    assert result.output_path == str(out)
    assert result.audio_duration > 0
    assert "READING COMPLETE" in result.summary()


def test_export_skips_empty_audio(tmp_path):
    result = export_audio(AudioBuilder(), str(tmp_path / "x.mp3"), _config(), SessionResult())

    assert result.output_path == ""
    assert not (tmp_path / "x.mp3").exists()


def test_export_without_cues(tmp_path):
    builder = AudioBuilder()
    builder.add_speech(make_wav(0.2), cue=Cue("a", 0, 0, 0.0, 0.0))

    export_audio(builder, str(tmp_path / "x.wav"), _config(), SessionResult(), write_cues=False)

    assert (tmp_path / "x.wav").exists()
    assert not (tmp_path / "x.cues.json").exists()
