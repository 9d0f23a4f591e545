from __future__ import annotations

import regex as re

DEVANAGARI = re.compile(r"\p{Script=Devanagari}")
GURMUKHI = re.compile(r"\p{Script=Gurmukhi}")
ALNUM_OR_MARK = re.compile(r"[\p{L}\p{M}]+", re.UNICODE)


def detect_lang_from_text(text: str | None, default: str = "en") -> str:
    """Return 'pa' for Gurmukhi, 'hi' for Devanagari, else *default*.

    Romanised Hindi ("bijli ka bill") carries no script signal and falls through to
    *default*, so callers should pass the kiosk's current language there.
    """
    if not text or not isinstance(text, str):
        return default

    matches = ALNUM_OR_MARK.findall(text)
    if not matches:
        return default

    letters = "".join(matches)
    if GURMUKHI.search(letters):
        return "pa"
    if DEVANAGARI.search(letters):
        return "hi"
    return default


__all__ = ["detect_lang_from_text"]
