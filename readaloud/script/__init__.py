"""Bubble text cleanup ahead of speech synthesis."""

from .text_preprocessor import clean_text, is_all_caps, to_sentence_case

__all__ = [
    "clean_text",
    "is_all_caps",
    "to_sentence_case",
]
