"""
Unit tests for bubble-text cleaning.
"""
import pytest

from readaloud.script.text_preprocessor import clean_text, is_all_caps, to_sentence_case


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("EVERY-\nONE IS HERE!", "Everyone is here!"),
        ("Where\n  are\nwe   going?", "Where are we going?"),
        ("Wait.....", "Wait..."),
        ("Wait…", "Wait..."),
        ("I was — no, never mind", "I was, no, never mind"),
        ("What?!?!", "What?!"),
        ("No!!!", "No!"),
        ("— Hello", "Hello"),
        ("", ""),
        ("   \n ", ""),
    ],
)
def test_clean_text(raw, expected):
    assert clean_text(raw) == expected


def test_caps_fix_can_be_disabled():
    assert clean_text("HELLO THERE", fix_caps=False) == "HELLO THERE"


def test_is_all_caps():
    assert is_all_caps("WHAT ARE YOU DOING?")
    assert is_all_caps("I'M FINE, mOM")  # mostly capitals
    assert not is_all_caps("Normal sentence here.")
    assert not is_all_caps("A")


def test_to_sentence_case_restores_pronoun_and_starts():
    assert to_sentence_case("I THINK SO. i'M SURE! OK") == "I think so. I'm sure! Ok"
