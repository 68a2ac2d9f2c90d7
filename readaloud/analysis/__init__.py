"""Page analysis: remote bubble detection and look-ahead scheduling."""

from .analyzer import (
    AnalysisError,
    BaseAnalyzer,
    GeminiAnalyzer,
    parse_bubbles,
    resolve_api_key,
)
from .prefetch import PREFETCH_WINDOW, AnalysisPrefetcher

__all__ = [
    "AnalysisError",
    "BaseAnalyzer",
    "GeminiAnalyzer",
    "parse_bubbles",
    "resolve_api_key",
    "PREFETCH_WINDOW",
    "AnalysisPrefetcher",
]
