"""Lightweight content analysis of a document's extracted text.

Everything here is heuristic: keyword frequency, a keyword-based document
category and a few structural features. The results are stored as chunk
metadata and can be used as exact-match filters when listing records.
"""

import re
from collections import Counter
from dataclasses import dataclass, field

KEYWORD_LIMIT = 10
MIN_KEYWORD_LENGTH = 4

STOP_WORDS = frozenset({"this", "that", "then", "than", "with", "from"})

# First match wins
_CATEGORY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("financial", "statement"), "Financial Document"),
    (("strategy",), "Strategy Document"),
    (("audit",), "Audit Document"),
    (("report",), "Report"),
)
GENERAL_CATEGORY = "General Document"

_PUNCTUATION = re.compile(r"[^\w\s]")
_SENTENCE_END = re.compile(r"[.!?]")
_FORMULA = re.compile(r"[=+\-*/(){}\[\]]")
_LIST_ITEM = re.compile(r"^\s*(?:[-•*]|\d+\.)\s+", re.MULTILINE)


@dataclass(frozen=True)
class ContentAnalysis:
    detected_title: str | None
    keywords: list[str] = field(default_factory=list)
    category: str = GENERAL_CATEGORY
    has_formulas: bool = False
    has_tables: bool = False
    has_lists: bool = False

    def content_features(self) -> dict[str, bool]:
        return {
            "hasFormulas": self.has_formulas,
            "hasTables": self.has_tables,
            "hasLists": self.has_lists,
        }


def detect_title(text: str) -> str | None:
    """First sentence of the first non-blank line, without heading markers."""
    for line in text.splitlines():
        if line.strip():
            first = _SENTENCE_END.split(line.strip(), maxsplit=1)[0]
            title = first.lstrip("#").strip()
            return title or None
    return None


def extract_keywords(text: str, limit: int = KEYWORD_LIMIT) -> list[str]:
    """Most frequent words of at least four letters, stop words excluded.

    Ties keep first-occurrence order.
    """
    words = _PUNCTUATION.sub("", text.lower()).split()
    counts = Counter(
        word
        for word in words
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    )
    return [word for word, _ in counts.most_common(limit)]


def classify_document(text: str) -> str:
    lowered = text.lower()
    for terms, category in _CATEGORY_RULES:
        if all(term in lowered for term in terms):
            return category
    return GENERAL_CATEGORY


def analyze_content(text: str) -> ContentAnalysis:
    return ContentAnalysis(
        detected_title=detect_title(text),
        keywords=extract_keywords(text),
        category=classify_document(text),
        has_formulas=_FORMULA.search(text) is not None,
        has_tables="|" in text,
        has_lists=_LIST_ITEM.search(text) is not None,
    )
