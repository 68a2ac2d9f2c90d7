"""
Text preprocessing for narrating speech-bubble text.

Comic lettering is usually hand-broken across lines, hyphenated at odd
places, and set in capitals.  These helpers turn raw bubble text into
something a speech engine reads naturally.
"""

import re

# Hyphenation at line break: "EVERY-\nONE" → "EVERYONE"
_RE_HYPHEN_LINEBREAK = re.compile(r"(\w)-\s*\n\s*(\w)")

_RE_MULTI_WHITESPACE = re.compile(r"\s+")

# Ellipsis normalisation
_RE_ELLIPSIS = re.compile(r"\.{2,}|…")

# Em/en dashes become a short spoken pause
_RE_DASHES = re.compile(r"\s*[—–]+\s*|\s+--\s+")

# "?!?!" → "?!", "!!!" → "!"
_RE_REPEATED_PUNCT = re.compile(r"([!?])[!?]+")

# Sentence starts for re-capitalisation
_RE_SENTENCE_START = re.compile(r"(^|[.!?]\s+)([a-z])")

# Standalone lowercase "i" (and i'm, i'll, ...)
_RE_PRONOUN_I = re.compile(r"\bi\b")

# Fraction of cased letters that must be uppercase to treat text as lettering
CAPS_RATIO = 0.8


def is_all_caps(text: str) -> bool:
    """True if nearly every cased letter in *text* is uppercase."""
    letters = [c for c in text if c.isalpha() and (c.isupper() or c.islower())]
    if len(letters) < 2:
        return False
    upper = sum(1 for c in letters if c.isupper())
    return upper / len(letters) >= CAPS_RATIO


def to_sentence_case(text: str) -> str:
    """Lowercase *text*, then re-capitalise sentence starts and "I"."""
    t = text.lower()
    t = _RE_SENTENCE_START.sub(lambda m: m.group(1) + m.group(2).upper(), t)
    return _RE_PRONOUN_I.sub("I", t)


def _collapse_repeats(match: "re.Match") -> str:
    run = match.group(0)
    if "?" in run and "!" in run:
        return "?!"
    return run[0]


def clean_text(text: str, fix_caps: bool = True) -> str:
    """
    Clean raw bubble text for speech synthesis.

    Steps:
    1. Rejoin words hyphenated across line breaks
    2. Collapse newlines and runs of whitespace into single spaces
    3. Normalise ellipses, dashes and repeated ?/! marks
    4. Optionally convert all-caps lettering to sentence case

    Returns an empty string for blank input.
    """
    if not text:
        return ""

    t = _RE_HYPHEN_LINEBREAK.sub(r"\1\2", text)
    t = _RE_MULTI_WHITESPACE.sub(" ", t)

    t = _RE_ELLIPSIS.sub("...", t)
    t = _RE_DASHES.sub(", ", t)
    t = _RE_REPEATED_PUNCT.sub(_collapse_repeats, t)

    if fix_caps and is_all_caps(t):
        t = to_sentence_case(t)

    return t.strip(" ,")
