"""
Adaptive dictionary for hyphenation decisions.

Reflow has to decide whether "inter-" + "national" at a line break is one word
or a hyphenated compound. This dictionary answers "is this probably a word?"
by combining:
- Base dictionary lookup (pyspellchecker)
- Morphological analysis (suffixes, prefixes)
- Pattern validation (character patterns, vowels)
- Document vocabulary (words the book itself uses unbroken)
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from spellchecker import SpellChecker

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_MIN_CONFIDENCE_TO_USE = 0.7
DEFAULT_MIN_OCCURRENCES_TO_LEARN = 2
MIN_WORD_LENGTH = 2
MAX_WORD_LENGTH = 30
MIN_BASE_WORD_LENGTH = 3  # For suffix/prefix stripping

WORD_PATTERN = re.compile(r"^[a-zA-ZäöüÄÖÜßàâçéèêëîïôùûüñáíóú]+$")
VOWEL_PATTERN = re.compile(r"[aeiouyäöüàâéèêëîïôùûáíóú]", re.IGNORECASE)
TRIPLE_LETTER_PATTERN = re.compile(r"(.)\1\1")
TOKEN_PATTERN = re.compile(r"[A-Za-zÀ-ÿ]+")

SUFFIXES = [
    ("s", 0.9),
    ("es", 0.9),
    ("ed", 0.85),
    ("ing", 0.85),
    ("ly", 0.8),
    ("tion", 0.7),
    ("ment", 0.7),
    ("ness", 0.7),
    ("ity", 0.7),
    ("al", 0.6),
    ("ive", 0.6),
    ("ous", 0.6),
]

PREFIXES = [
    ("un", 0.8),
    ("re", 0.8),
    ("pre", 0.7),
    ("non", 0.7),
    ("anti", 0.6),
    ("over", 0.6),
    ("under", 0.6),
]


@dataclass
class LearnedWord:
    """A word taken from the document's own vocabulary."""

    occurrences: int
    confidence: float


# =============================================================================
# ADAPTIVE DICTIONARY
# =============================================================================


@dataclass
class AdaptiveDictionary:
    """
    Word validator that also trusts the document's own vocabulary.

    A word the book spells unbroken at least ``min_occurrences_to_learn``
    times is accepted when it turns up split across a line, even if the base
    dictionary does not know it (names, technical terms).

    Attributes:
        base_spell: SpellChecker used for base lookups.
        learned_words: Words learned from the document.
        min_confidence_to_use: Minimum confidence for a learned word to count.
        min_occurrences_to_learn: Occurrences needed before learning a word.

    Example:
        >>> ad = AdaptiveDictionary()
        >>> ad.is_known_word("philosophy")
        True
        >>> ad.learn_from_text("Brambleworth spoke. Brambleworth left.")
        1
        >>> ad.is_known_word("brambleworth")
        True
    """

    base_spell: SpellChecker = field(default_factory=SpellChecker)
    learned_words: dict[str, LearnedWord] = field(default_factory=dict)
    min_confidence_to_use: float = DEFAULT_MIN_CONFIDENCE_TO_USE
    min_occurrences_to_learn: int = DEFAULT_MIN_OCCURRENCES_TO_LEARN

    def is_known_word(self, word: str) -> bool:
        """True if the word is in the base dictionary or confidently learned."""
        w = word.lower()
        if w in self.base_spell:
            return True
        entry = self.learned_words.get(w)
        return entry is not None and entry.confidence >= self.min_confidence_to_use

    def is_probably_word(self, word: str) -> tuple[bool, float]:
        """
        Hybrid validation.

        Returns:
            (is_valid, confidence); valid when confidence >= 0.5.
        """
        w = word.lower()
        if self.is_known_word(w):
            return True, 1.0

        confidence = self._check_morphology(w)
        confidence = min(confidence + self._check_pattern(w) * 0.3, 1.0)
        return confidence >= 0.5, confidence

    def _check_morphology(self, word: str) -> float:
        for suffix, score in SUFFIXES:
            if word.endswith(suffix) and len(word) > len(suffix) + MIN_BASE_WORD_LENGTH:
                base = word[: -len(suffix)]
                if base in self.base_spell:
                    return score
                # Consonant doubling only for -ing/-ed ("stopped" -> "stop")
                if suffix in ("ing", "ed") and len(base) >= 2:
                    if base.endswith(base[-1]) and base[:-1] in self.base_spell:
                        return score * 0.9

        for prefix, score in PREFIXES:
            if word.startswith(prefix) and len(word) > len(prefix) + MIN_BASE_WORD_LENGTH:
                if word[len(prefix) :] in self.base_spell:
                    return score

        return 0.0

    @staticmethod
    def _check_pattern(word: str) -> float:
        if not WORD_PATTERN.match(word):
            return 0.0
        if len(word) < MIN_WORD_LENGTH or len(word) > MAX_WORD_LENGTH:
            return 0.0
        if TRIPLE_LETTER_PATTERN.search(word):
            return 0.0
        if not VOWEL_PATTERN.search(word):
            return 0.2
        return 0.7

    def learn_from_text(self, text: str) -> int:
        """
        Learn unknown words the text uses repeatedly.

        Words broken by a hyphen at a line end are not counted, so a split
        word can never vouch for itself.

        Returns:
            Number of newly learned words.
        """
        unbroken = re.sub(r"\w+-\s*\n\s*\w+", " ", text)
        counts = Counter(token.lower() for token in TOKEN_PATTERN.findall(unbroken))
        learned = 0
        for word, occurrences in counts.items():
            if occurrences < self.min_occurrences_to_learn or word in self.base_spell:
                continue
            if self._check_pattern(word) < 0.5:
                continue
            confidence = min(1.0, 0.6 + 0.1 * occurrences)
            if word not in self.learned_words:
                learned += 1
            self.learned_words[word] = LearnedWord(occurrences=occurrences, confidence=confidence)
        if learned:
            logger.debug("Learned %d words from document vocabulary", learned)
        return learned

    def clear_learned_words(self) -> None:
        self.learned_words.clear()
