"""
Unit tests for look-ahead page analysis.

Tested functionality:
- Only pages in the window that are neither analyzed nor in flight are requested
- Analysis results are sequenced with the mode current at completion time
- Failures are logged and swallowed, leaving the page unanalyzed
- Unexpected analyzer exceptions are swallowed and counted the same way
- Listeners see the in-flight transitions

Async code runs with ``asyncio.run`` inside plain test functions.
"""
import asyncio

from conftest import FakeAnalyzer, make_book, make_page, make_region
from readaloud.analysis.prefetch import PREFETCH_WINDOW, AnalysisPrefetcher
from readaloud.layout.models import ReadingMode


def _book(count):
    return make_book(*(make_page(f"{i + 1:03d}.jpg") for i in range(count)))


def _row_regions():
    return [
        make_region("left", (100, 0, 150, 100)),
        make_region("right", (100, 800, 150, 900)),
    ]


def test_schedule_requests_window_only():
    book = _book(6)
    book[1].mark_analyzed([])
    analyzer = FakeAnalyzer()
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: ReadingMode.MANGA)

    async def scenario():
        tasks = prefetcher.schedule(0)
        assert prefetcher.in_flight == {"001.jpg", "003.jpg"}
        await asyncio.gather(*tasks)

    asyncio.run(scenario())

    assert PREFETCH_WINDOW == 3
    assert sorted(analyzer.calls) == ["001.jpg", "003.jpg"]
    assert [p.analyzed for p in book] == [True, True, True, False, False, False]
    assert prefetcher.in_flight == frozenset()


def test_schedule_near_end_of_book():
    book = _book(2)
    prefetcher = AnalysisPrefetcher(book, FakeAnalyzer(), lambda: ReadingMode.MANGA)

    assert prefetcher.pending_indices(1) == [1]
    assert prefetcher.pending_indices(5) == []


def test_in_flight_pages_are_not_requested_twice():
    book = _book(3)
    analyzer = FakeAnalyzer(gated=["001.jpg"])
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: ReadingMode.MANGA)

    async def scenario():
        first = prefetcher.schedule(0)
        second = prefetcher.schedule(0)
        assert len(first) == 3
        assert second == []
        assert await prefetcher.analyze_page(0) is False
        assert prefetcher.is_in_flight("001.jpg")

        analyzer.release("001.jpg")
        await asyncio.gather(*first)

    asyncio.run(scenario())

    assert analyzer.calls.count("001.jpg") == 1
    assert not prefetcher.is_in_flight("001.jpg")


def test_analyze_page_sequences_with_mode_at_completion():
    """A mode toggled while the request is in flight applies to its result"""
    book = _book(1)
    analyzer = FakeAnalyzer({"001.jpg": _row_regions()}, gated=["001.jpg"])
    mode = {"current": ReadingMode.WEBTOON}
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: mode["current"])

    async def scenario():
        task = asyncio.ensure_future(prefetcher.analyze_page(0))
        await asyncio.sleep(0)
        mode["current"] = ReadingMode.MANGA
        analyzer.release("001.jpg")
        return await task

    assert asyncio.run(scenario()) is True
    assert [r.id for r in book[0].regions] == ["right", "left"]
    assert [r.order for r in book[0].regions] == [1, 2]


def test_analyze_page_already_analyzed():
    book = make_book(make_page("001.jpg", []))
    analyzer = FakeAnalyzer()
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: ReadingMode.MANGA)

    assert asyncio.run(prefetcher.analyze_page(0)) is True
    assert analyzer.calls == []


def test_failure_is_swallowed_and_page_stays_unanalyzed(caplog):
    book = _book(2)
    analyzer = FakeAnalyzer(failing=["001.jpg"])
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: ReadingMode.MANGA)

    async def scenario():
        await asyncio.gather(*prefetcher.schedule(0))

    with caplog.at_level("WARNING", logger="readaloud.analysis.prefetch"):
        asyncio.run(scenario())

    assert not book[0].analyzed
    assert book[1].analyzed
    assert prefetcher.failures == 1
    assert prefetcher.failed_attempts("001.jpg") == 1
    assert prefetcher.failed_attempts("002.jpg") == 0
    assert prefetcher.in_flight == frozenset()
    assert "Analysis failed for page 1" in caplog.text

    # A later schedule retries the failed page
    asyncio.run(scenario())
    assert analyzer.calls.count("001.jpg") == 2
    assert prefetcher.failed_attempts("001.jpg") == 2


def test_unexpected_analyzer_error_is_swallowed(caplog):
    book = _book(2)
    analyzer = FakeAnalyzer(crashing=["002.jpg"])
    prefetcher = AnalysisPrefetcher(book, analyzer, lambda: ReadingMode.MANGA)

    with caplog.at_level("ERROR", logger="readaloud.analysis.prefetch"):
        assert asyncio.run(prefetcher.analyze_page(1)) is False

    assert not book[1].analyzed
    assert prefetcher.failures == 1
    assert prefetcher.failed_attempts("002.jpg") == 1
    assert prefetcher.in_flight == frozenset()
    assert "Unexpected analysis error for page 2" in caplog.text


def test_listeners_see_start_and_finish():
    book = _book(1)
    prefetcher = AnalysisPrefetcher(book, FakeAnalyzer(), lambda: ReadingMode.MANGA)
    seen = []
    prefetcher.add_listener(
        lambda idx: seen.append((idx, prefetcher.is_in_flight("001.jpg"), book[idx].analyzed))
    )

    asyncio.run(prefetcher.analyze_page(0))

    assert seen == [(0, True, False), (0, False, True)]
