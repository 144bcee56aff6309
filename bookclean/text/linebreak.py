"""
Line-break hyphenation rejoiner.

Joins the physical lines of an OCR paragraph into one logical line. A word
split by a hyphen at a line end is either rejoined ("phenom-" + "enology") or
kept as a hyphenated compound ("well-" + "known"), decided with the adaptive
dictionary.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bookclean.text.dictionary import AdaptiveDictionary

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

WORD_PATTERN = re.compile(r"^[a-zA-ZäöüÄÖÜßàâçéèêëîïôùûüñáíóú]+$")

MIN_CONFIDENCE_TO_JOIN = 0.3
POSITION_SIGNAL_BOOST = 0.6

MIN_JOINED_LENGTH = 3
MAX_JOINED_LENGTH = 25

_TRAILING_FRAGMENT = re.compile(r"(\w+)-$")
_LEADING_FRAGMENT = re.compile(r"^(\w+)")


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass
class LineBreakCandidate:
    """A hyphen at a line end and what to do with it."""

    fragment1: str  # Word ending with hyphen
    fragment2: str  # First word of next line
    joined: str
    confidence: float
    should_join: bool
    reason: str


@dataclass
class LineBreakStats:
    candidates_found: int = 0
    candidates_joined: int = 0
    candidates_kept: int = 0


# =============================================================================
# LINE-BREAK REJOINER
# =============================================================================


class LineBreakRejoiner:
    """
    Joins paragraph lines, resolving end-of-line hyphens.

    Example:
        >>> rejoiner = LineBreakRejoiner(AdaptiveDictionary())
        >>> rejoiner.evaluate_join("phenom-", "enology").joined
        'phenomenology'
        >>> text, stats = rejoiner.join_lines(["a well-", "known fact"])
        >>> text
        'a well-known fact'
    """

    def __init__(self, dictionary: AdaptiveDictionary):
        self.dictionary = dictionary

    def evaluate_join(self, fragment1: str, fragment2: str) -> LineBreakCandidate:
        """
        Decide whether two fragments form one word.

        Args:
            fragment1: Word ending with hyphen (e.g., "phenom-").
            fragment2: First word of the next line (e.g., "enology").
        """
        head = fragment1.rstrip("-")
        tail = re.sub(r"[^\w]", "", fragment2)
        joined = head + tail

        def keep(reason: str, confidence: float = 0.0) -> LineBreakCandidate:
            return LineBreakCandidate(fragment1, fragment2, f"{head}-{tail}", confidence, False, reason)

        if not MIN_JOINED_LENGTH <= len(joined) <= MAX_JOINED_LENGTH:
            return keep("Invalid length")
        if tail[:1].isupper():
            return keep("Capitalised continuation")

        is_valid, confidence = self.dictionary.is_probably_word(joined)
        if is_valid:
            return LineBreakCandidate(
                fragment1, fragment2, joined, confidence, True, "Valid word (dictionary/morphology)"
            )

        # Two real words on either side of the hyphen is a compound
        if self.dictionary.is_known_word(head) and self.dictionary.is_known_word(tail):
            return keep("Hyphenated compound", confidence)

        if WORD_PATTERN.match(joined) and confidence >= MIN_CONFIDENCE_TO_JOIN:
            return LineBreakCandidate(
                fragment1,
                fragment2,
                joined,
                max(confidence, POSITION_SIGNAL_BOOST),
                True,
                "Looks like word + position signal",
            )
        return keep("Failed validation", confidence)

    def join_lines(self, lines: list[str]) -> tuple[str, LineBreakStats]:
        """
        Join the lines of one paragraph into a single line.

        Returns:
            Tuple of (joined_text, statistics).
        """
        stats = LineBreakStats()
        pieces = [line.strip() for line in lines if line.strip()]
        if not pieces:
            return "", stats

        result = pieces[0]
        for piece in pieces[1:]:
            trailing = _TRAILING_FRAGMENT.search(result)
            leading = _LEADING_FRAGMENT.match(piece)
            if trailing and leading:
                stats.candidates_found += 1
                candidate = self.evaluate_join(trailing.group(0), leading.group(1))
                prefix = result[: trailing.start()]
                rest = piece[leading.end() :]
                if candidate.should_join:
                    stats.candidates_joined += 1
                    result = prefix + candidate.joined + rest
                else:
                    stats.candidates_kept += 1
                    result = prefix + trailing.group(0) + piece
                continue
            if result.endswith(("—", "–")):
                result += piece
            else:
                result += " " + piece

        if stats.candidates_found:
            logger.debug(
                "Line breaks: %d found, %d joined, %d kept",
                stats.candidates_found,
                stats.candidates_joined,
                stats.candidates_kept,
            )
        return result, stats
