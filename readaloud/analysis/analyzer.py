"""
Speech-bubble detection via a remote vision model.

Sends a page image to Gemini and converts the structured JSON reply
into :class:`TextRegion` objects.  Bounding boxes come back as
``[ymin, xmin, ymax, xmax]`` on a 0–1000 scale.
"""

import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Union

from google import genai
from google.genai import types

from comicbook.page.models import BOX_SCALE, Page, TextRegion

logger = logging.getLogger(__name__)

GEMINI_MODEL = "gemini-2.5-flash"

SYSTEM_INSTRUCTION = """
You are a comic book reader assistant.
Your task is to detect speech bubbles and narrative text boxes in the provided comic page image.
Return a JSON object with a single key "bubbles" which is an array of objects.
Each object must have:
1. "text": The full text content inside the bubble.
2. "box_2d": The bounding box of the bubble in the format [ymin, xmin, ymax, xmax] on a 1000x1000 scale.
Exclude sound effects unless they contain significant narrative text.
"""

USER_PROMPT = "Analyze this comic page."

_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "bubbles": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "text": types.Schema(type=types.Type.STRING),
                    "box_2d": types.Schema(
                        type=types.Type.ARRAY,
                        items=types.Schema(type=types.Type.INTEGER),
                        description="ymin, xmin, ymax, xmax (0-1000)",
                    ),
                },
                required=["text", "box_2d"],
            ),
        )
    },
    required=["bubbles"],
)

_API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


class AnalysisError(RuntimeError):
    """The analysis call failed or returned malformed data."""


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _clamp(value: float) -> float:
    return max(0.0, min(BOX_SCALE, value))


def _parse_box(raw: Any, index: int) -> tuple:
    if not isinstance(raw, (list, tuple)) or len(raw) != 4:
        raise AnalysisError(f"Bubble {index}: box_2d must be 4 numbers, got {raw!r}")
    try:
        ymin, xmin, ymax, xmax = (_clamp(float(v)) for v in raw)
    except (TypeError, ValueError) as e:
        raise AnalysisError(f"Bubble {index}: non-numeric box_2d {raw!r}") from e
    # Models occasionally swap corners; normalise rather than reject
    return (min(ymin, ymax), min(xmin, xmax), max(ymin, ymax), max(xmin, xmax))


def parse_bubbles(payload: Union[str, bytes, dict]) -> List[TextRegion]:
    """
    Convert a ``{"bubbles": [...]}`` reply into text regions.

    Each region gets a fresh unique id and a provisional ``order`` equal
    to its position in the reply.  Bubbles with blank text are dropped.

    Raises:
        AnalysisError: If the payload is not valid JSON or does not
                       follow the expected structure.
    """
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise AnalysisError(f"Analysis reply is not valid JSON: {e}") from e
    else:
        data = payload

    if not isinstance(data, dict) or not isinstance(data.get("bubbles"), list):
        raise AnalysisError("Analysis reply has no 'bubbles' array")

    regions: List[TextRegion] = []
    for i, bubble in enumerate(data["bubbles"]):
        if not isinstance(bubble, dict):
            raise AnalysisError(f"Bubble {i} is not an object")
        text = bubble.get("text")
        if not isinstance(text, str):
            raise AnalysisError(f"Bubble {i} has no text")
        box = _parse_box(bubble.get("box_2d"), i)
        if not text.strip():
            continue
        regions.append(
            TextRegion(
                id=str(uuid.uuid4()),
                text=text,
                box=box,
                order=len(regions) + 1,
            )
        )
    return regions


# ---------------------------------------------------------------------------
# Analyzers
# ---------------------------------------------------------------------------


class BaseAnalyzer(ABC):
    """
    Common interface for page analyzers.

    ``analyze`` is a coroutine so several pages can be in flight on the
    same event loop.
    """

    @abstractmethod
    async def analyze(self, page: Page) -> List[TextRegion]:
        """
        Detect the text regions on *page*.

        Returns:
            Regions in the order the backend reported them.

        Raises:
            AnalysisError: On any backend failure or malformed reply.
        """

    @property
    @abstractmethod
    def analyzer_name(self) -> str:
        """Human-readable backend identifier."""


def resolve_api_key(api_key: Optional[str] = None) -> Optional[str]:
    """Return *api_key* or the first Gemini key found in the environment."""
    if api_key:
        return api_key
    for var in _API_KEY_VARS:
        value = os.getenv(var)
        if value:
            return value
    return None


class GeminiAnalyzer(BaseAnalyzer):
    """
    Speech-bubble detection with Gemini structured output.

    Usage::

        analyzer = GeminiAnalyzer()
        regions = await analyzer.analyze(page)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GEMINI_MODEL,
        client: Optional[genai.Client] = None,
    ):
        """
        Args:
            api_key: Gemini API key.  Falls back to ``GEMINI_API_KEY``,
                     ``GOOGLE_API_KEY`` or ``API_KEY``.
            model:   Gemini model id.
            client:  Pre-built client (mainly for tests).

        Raises:
            AnalysisError: If no client is given and no API key is found.
        """
        self.model = model
        if client is None:
            key = resolve_api_key(api_key)
            if not key:
                raise AnalysisError(
                    "API key is missing. Set GEMINI_API_KEY in the environment "
                    "or a .env file."
                )
            client = genai.Client(api_key=key)
        self._client = client

    @property
    def analyzer_name(self) -> str:
        return f"Gemini ({self.model})"

    async def analyze(self, page: Page) -> List[TextRegion]:
        try:
            image_bytes = page.image.read_bytes()
        except Exception as e:
            raise AnalysisError(f"Could not read image for page {page.id}: {e}") from e

        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(
                        data=image_bytes, mime_type=page.image.mime_type
                    ),
                    USER_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_INSTRUCTION,
                    response_mime_type="application/json",
                    response_schema=_RESPONSE_SCHEMA,
                ),
            )
        except Exception as e:
            raise AnalysisError(f"Gemini request failed for page {page.id}: {e}") from e

        if not response.text:
            raise AnalysisError(f"No data returned from Gemini for page {page.id}")

        regions = parse_bubbles(response.text)
        logger.debug("Page %s: %d bubbles detected", page.id, len(regions))
        return regions

    def __repr__(self) -> str:
        return f"GeminiAnalyzer(model={self.model})"
