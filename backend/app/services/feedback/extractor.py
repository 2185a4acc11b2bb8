# app/services/feedback/extractor.py

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

SECTIONS: Tuple[str, ...] = ("fluency", "vocabulary", "grammar")

FALLBACK_EMPTY = "empty"
FALLBACK_RAW = "raw"


def _marker_pattern(label: str) -> "re.Pattern[str]":
    # A marker starts a line: optional bullets / heading hashes / numbering, an optional
    # glyph (💬, 🧠, 🛠️ ...), optional bold, the label word, then a separator or end of line.
    return re.compile(
        r"^[ \t]*(?:[#>*\-•]+[ \t]*)*"
        r"(?:\d{1,2}[.)][ \t]*)?"
        r"(?:[^\w\s*#]{1,3}[ \t]*)?"
        r"(?:\*\*|__)?"
        + re.escape(label)
        + r"(?![^\W_])(?:\*\*|__)?[ \t]*(?:[:：—–\-]+|$)[ \t]*(?:\*\*|__)?[ \t]*",
        re.IGNORECASE | re.MULTILINE,
    )


_MARKERS: Dict[str, "re.Pattern[str]"] = {s: _marker_pattern(s) for s in SECTIONS}


def _strip_leading_markers(section: str) -> str:
    # a section never starts with a marker ("Fluency: Fluency: x" -> "x")
    section = section.strip()
    while section:
        for pattern in _MARKERS.values():
            m = pattern.match(section)
            if m is not None:
                section = section[m.end():].strip()
                break
        else:
            break
    return section


@dataclass(frozen=True)
class FeedbackSections:
    fluency: str = ""
    vocabulary: str = ""
    grammar: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class FeedbackExtractor:
    """
    Splits generated feedback into fluency / vocabulary / grammar.

    Each section runs from the end of its marker to the start of the next marker
    found anywhere in the text (or the end of the text). Text before the first
    marker is dropped, and so are labels repeated right after a marker.
    Never raises.

    fallback:
      "empty" - sections without a marker are ""
      "raw"   - same, but when no marker is found at all the whole text goes
                into fluency so nothing is dropped
    """

    def __init__(self, fallback: str = FALLBACK_EMPTY) -> None:
        if fallback not in (FALLBACK_EMPTY, FALLBACK_RAW):
            raise ValueError(f"Unknown extraction fallback: {fallback}")
        self.fallback = fallback

    def find_markers(self, text: str) -> List[Tuple[int, int, str]]:
        """(start, end, section) for every marker occurrence, ordered by position."""
        found: List[Tuple[int, int, str]] = []
        for section, pattern in _MARKERS.items():
            for m in pattern.finditer(text):
                found.append((m.start(), m.end(), section))
        found.sort()
        return found

    def extract(self, text: Optional[str]) -> FeedbackSections:
        if not isinstance(text, str) or not text.strip():
            return FeedbackSections()

        markers = self.find_markers(text)
        if not markers:
            if self.fallback == FALLBACK_RAW:
                return FeedbackSections(fluency=text.strip())
            return FeedbackSections()

        out: Dict[str, str] = {}
        for i, (_, end, section) in enumerate(markers):
            if section in out:
                # first occurrence wins; later duplicates only act as boundaries
                continue
            stop = markers[i + 1][0] if i + 1 < len(markers) else len(text)
            out[section] = _strip_leading_markers(text[end:stop])

        return FeedbackSections(**out)


_default = FeedbackExtractor()


def extract_feedback(text: Optional[str]) -> FeedbackSections:
    return _default.extract(text)
