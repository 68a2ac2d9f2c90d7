#!/usr/bin/env python3
"""
ComiCast CLI entry point.

Reads a comic (CBZ/ZIP of page images, or a PDF) aloud: speech bubbles
are detected with Gemini, ordered for the chosen reading mode, and
narrated with Kokoro TTS into an MP3 (or WAV) file with a JSON cue
sheet alongside.

Usage::

    python comicast.py issue01.cbz issue01.mp3
    python comicast.py issue01.cbz out.mp3 --mode webtoon --pages 3-10
    python comicast.py issue01.cbz out.mp3 --voice bf_emma --rate 1.1
    python comicast.py issue01.cbz --debug-order --pages 1-2
    python comicast.py issue01.cbz out.mp3 --rate 1.2 --save-settings

Verbosity levels::

    -v 0   Quiet: warnings and errors only.
    -v 1   Normal: session summaries and progress bars (default).
    -v 2   Debug: per-block narration detail, all internal decisions.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from comicbook.document.archive_reader import ComicLoadError, open_comic
from readaloud.analysis.analyzer import AnalysisError, GeminiAnalyzer
from readaloud.layout.models import ReadingMode
from readaloud.layout.sequencer import preview_reading_order
from readaloud.session import ReaderSession, SessionConfig, export_audio
from readaloud.settings import (
    DEFAULT_SETTINGS_PATH,
    ReaderSettings,
    clear_settings,
    load_settings,
    save_settings,
)
from readaloud.tts.audio_builder import AudioBuilder
from readaloud.tts.kokoro_engine import DEFAULT_KOKORO_VOICE, KOKORO_VOICES, KokoroEngine
from readaloud.tts.narrator import BaseNarrator, RecordingNarrator

logger = logging.getLogger("comicast")

# Mapping from --verbose integer to logging level
_VERBOSITY_MAP = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}

_OWN_LOGGERS = ("comicast", "comicbook", "readaloud")
_NOISY_LOGGERS = ("kokoro", "PIL", "httpx", "google_genai", "urllib3")


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------


def _parse_page_range(value: str):
    """
    Parse a 1-based page range string (e.g. ``"3-10"``) into a
    0-based ``(start, end)`` tuple.

    Raises:
        argparse.ArgumentTypeError: On malformed input.
    """
    parts = value.split("-")
    try:
        start = int(parts[0])
        end = int(parts[1]) if len(parts) > 1 else start
    except (ValueError, IndexError):
        raise argparse.ArgumentTypeError(
            f"Invalid page range '{value}'. Use N or N-M (1-based)."
        )
    if start < 1 or end < start:
        raise argparse.ArgumentTypeError(
            f"Invalid page range '{value}'. Start must be >= 1 and end >= start."
        )
    return (start - 1, end - 1)


def _parse_mode(value: str) -> ReadingMode:
    try:
        return ReadingMode.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _build_parser() -> argparse.ArgumentParser:
    """Construct the argument parser with all session options."""
    p = argparse.ArgumentParser(
        description="Read a comic aloud into an audio file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  python comicast.py issue01.cbz issue01.mp3\n"
            "  python comicast.py issue01.cbz out.mp3 --mode webtoon --pages 3-10\n"
            "  python comicast.py issue01.cbz --debug-order --pages 1-2\n"
        ),
    )

    # -- Positional --------------------------------------------------------
    p.add_argument("input", nargs="?", help="Comic file (.cbz, .zip or .pdf)")
    p.add_argument(
        "output",
        nargs="?",
        default=None,
        help="Output audio file (.mp3 or .wav). Defaults to the input name.",
    )

    # -- Reading -----------------------------------------------------------
    reading = p.add_argument_group("reading")
    reading.add_argument(
        "--mode",
        type=_parse_mode,
        default=None,
        metavar="MODE",
        help="Reading mode: manga (right-to-left rows) or webtoon (top to bottom). "
        "Default: from settings (manga).",
    )
    reading.add_argument(
        "--pages",
        type=_parse_page_range,
        default=None,
        metavar="N-M",
        help="Page range, 1-based inclusive (e.g. 1-10). Default: all.",
    )

    # -- Voice -------------------------------------------------------------
    voice = p.add_argument_group("voice")
    voice.add_argument(
        "--voice",
        default=None,
        help=f"Kokoro voice ID (default: {DEFAULT_KOKORO_VOICE}). "
        "Use --list-voices to see all.",
    )
    voice.add_argument(
        "--lang",
        default="a",
        choices=["a", "b"],
        help="Language code: 'a' American English, 'b' British English (default: a)",
    )
    voice.add_argument(
        "--rate",
        type=float,
        default=None,
        metavar="FLOAT",
        help="Speech rate multiplier (default: from settings, 1.0)",
    )
    voice.add_argument(
        "--pitch",
        type=float,
        default=None,
        metavar="FLOAT",
        help="Pitch multiplier (default: from settings, 1.0)",
    )
    voice.add_argument(
        "--list-voices",
        action="store_true",
        help="List available Kokoro voices, then exit",
    )

    # -- Settings ----------------------------------------------------------
    settings = p.add_argument_group("settings")
    settings.add_argument(
        "--settings",
        default=str(DEFAULT_SETTINGS_PATH),
        metavar="FILE",
        help=f"Settings file (default: {DEFAULT_SETTINGS_PATH})",
    )
    settings.add_argument(
        "--save-settings",
        action="store_true",
        help="Store the effective mode, rate, pitch and voice as the new defaults",
    )
    settings.add_argument(
        "--reset-settings",
        action="store_true",
        help="Delete the settings file before running",
    )

    # -- Audio -------------------------------------------------------------
    audio = p.add_argument_group("audio")
    audio.add_argument(
        "--output-wav",
        action="store_true",
        help="Export as WAV instead of MP3",
    )
    audio.add_argument(
        "--bitrate",
        default="192k",
        help="MP3 bitrate (default: 192k)",
    )
    audio.add_argument(
        "--enhance",
        action="store_true",
        help="Apply light compression and a high-pass filter before export",
    )
    audio.add_argument(
        "--no-cues",
        action="store_true",
        help="Do not write the <output>.cues.json cue sheet",
    )

    # -- Debug / output control --------------------------------------------
    debug = p.add_argument_group("debug & output")
    debug.add_argument(
        "--debug-order",
        action="store_true",
        help="Analyze the pages and print the reading order without narrating",
    )
    debug.add_argument(
        "-v",
        "--verbose",
        type=int,
        choices=[0, 1, 2],
        default=1,
        help="Verbosity: 0=quiet, 1=normal (default), 2=debug",
    )
    debug.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable tqdm progress bars",
    )

    return p


# ------------------------------------------------------------------
# Logging setup
# ------------------------------------------------------------------


def _configure_logging(verbosity: int) -> None:
    """
    Set up the ``comicast``, ``comicbook`` and ``readaloud`` loggers.

    At verbosity 0 (WARNING), uses a minimal format. At 1 (INFO) only
    the message is shown; at 2 (DEBUG) the time and module name are
    added for traceability.
    """
    level = _VERBOSITY_MAP.get(verbosity, logging.INFO)

    if level <= logging.DEBUG:
        fmt = "%(asctime)s %(name)s %(levelname)s: %(message)s"
        datefmt = "%H:%M:%S"
    elif level <= logging.INFO:
        fmt = "%(message)s"
        datefmt = None
    else:
        fmt = "%(levelname)s: %(message)s"
        datefmt = None

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    for name in _OWN_LOGGERS:
        own = logging.getLogger(name)
        own.setLevel(level)
        own.handlers.clear()
        own.addHandler(handler)
        own.propagate = False

    # Suppress noisy third-party loggers regardless of verbosity
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ------------------------------------------------------------------
# Sub-commands
# ------------------------------------------------------------------


def _cmd_list_voices() -> None:
    """Print available Kokoro voices, then exit."""
    logger.info("Available Kokoro voices (auto-download on first use):")
    logger.info("")
    logger.info("  %-15s %-10s %-8s %s", "ID", "ACCENT", "GENDER", "NAME")
    logger.info("  %-15s %-10s %-8s %s", "-" * 15, "-" * 10, "-" * 8, "-" * 10)
    for voice_id, info in KOKORO_VOICES.items():
        logger.info(
            "  %-15s %-10s %-8s %s",
            voice_id,
            info["accent"],
            info["gender"],
            info["name"],
        )
    logger.info("")
    logger.info("Use --voice ID to select. Default: %s", DEFAULT_KOKORO_VOICE)
    logger.info("Use --lang a/b for American/British accent.")


class _NullNarrator(BaseNarrator):
    """Narrator for analysis-only runs."""

    def speak(self, request, on_done) -> None:
        on_done()

    def cancel(self) -> None:
        pass


def _cmd_debug_order(session: ReaderSession, start: int, end: int) -> int:
    """Analyze *start*..*end* and log the reading order.  Returns pages analyzed."""
    analyzed = asyncio.run(session.analyze_range(start, end))
    logger.info("\n%s", preview_reading_order(session.book, session.driver.reading_mode))
    return analyzed


# ------------------------------------------------------------------
# Settings / output resolution
# ------------------------------------------------------------------


def _effective_settings(args: argparse.Namespace) -> ReaderSettings:
    """Stored settings with any command-line overrides applied."""
    settings = load_settings(args.settings)
    overrides = {}
    if args.mode is not None:
        overrides["default_reading_mode"] = args.mode
    if args.rate is not None:
        overrides["rate"] = args.rate
    if args.pitch is not None:
        overrides["pitch"] = args.pitch
    if args.voice is not None:
        overrides["voice"] = args.voice
    return replace(settings, **overrides)


def _resolve_output_path(args: argparse.Namespace) -> Optional[str]:
    """
    Determine the output file path from CLI arguments.

    Returns ``None`` for --debug-order runs that don't produce audio.
    """
    if args.output:
        path = args.output
    elif args.debug_order:
        return None
    else:
        ext = ".wav" if args.output_wav else ".mp3"
        path = str(Path(args.input).with_suffix(ext))

    if args.output_wav and not path.lower().endswith(".wav"):
        path = str(Path(path).with_suffix(".wav"))

    return path


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


def main():
    """Parse arguments, configure logging, and run a reading session."""
    parser = _build_parser()
    args = parser.parse_args()

    # Logging must be configured before any logger calls
    _configure_logging(args.verbose)
    disable_tqdm = args.no_progress or args.verbose == 0

    # --list-voices exits early
    if args.list_voices:
        _cmd_list_voices()
        return

    if not args.input:
        parser.error("An input comic file is required.")

    load_dotenv()

    if args.reset_settings:
        if clear_settings(args.settings):
            logger.info("Settings reset: %s", args.settings)

    settings = _effective_settings(args)
    if args.save_settings:
        if save_settings(settings, args.settings):
            logger.info("Settings saved: %s", args.settings)

    try:
        book = open_comic(args.input)
    except ComicLoadError as e:
        parser.error(str(e))

    if book.is_empty:
        parser.error(f"No readable pages in {args.input}")

    start, end = args.pages if args.pages else (0, len(book) - 1)
    if start >= len(book):
        parser.error(f"--pages starts past the last page ({len(book)})")
    end = min(end, len(book) - 1)

    output_path = _resolve_output_path(args)

    config = SessionConfig.from_settings(
        settings,
        mp3_bitrate=args.bitrate,
        enhance_audio=args.enhance,
        disable_tqdm=disable_tqdm,
    )

    # Log run header
    logger.info("ComiCast")
    logger.info("  Input:  %s (%d pages)", args.input, len(book))
    if output_path:
        logger.info("  Output: %s", output_path)
    if args.pages:
        logger.info("  Pages:  %d-%d", start + 1, end + 1)
    logger.info("  Mode:   %s", config.reading_mode.name)
    logger.info(
        "  Voice:  %s (lang=%s)", config.voice or DEFAULT_KOKORO_VOICE, args.lang
    )
    if config.rate != 1.0:
        logger.info("  Rate:   %.2fx", config.rate)
    if config.pitch != 1.0:
        logger.info("  Pitch:  %.2fx", config.pitch)

    try:
        analyzer = GeminiAnalyzer()
    except AnalysisError as e:
        parser.error(str(e))

    if args.debug_order:
        # The narrator is never asked to speak in this mode
        session = ReaderSession(book, analyzer, _NullNarrator(), config)
        analyzed = _cmd_debug_order(session, start, end)
        if analyzed == 0:
            sys.exit(1)
        return

    engine = KokoroEngine(voice=config.voice or DEFAULT_KOKORO_VOICE, lang_code=args.lang)
    builder = AudioBuilder(sample_rate=engine.sample_rate)
    narrator = RecordingNarrator(
        engine,
        builder,
        block_pause=config.block_pause,
        page_pause=config.page_pause,
    )
    session = ReaderSession(book, analyzer, narrator, config)

    result = asyncio.run(session.run(start_page=start, stop_after_page=end))
    result = export_audio(
        builder, output_path, config, result, write_cues=not args.no_cues
    )
    logger.info("\n%s", result.summary())

    if narrator.spoken == 0:
        logger.warning("No speech was produced")
        sys.exit(1)


if __name__ == "__main__":
    main()
