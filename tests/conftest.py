"""
Pytest configuration and fixtures for bookclean tests.

The sample book is built line by line so tests can rely on exact positions:
45 lines of front matter, six chapters of plain prose and a 33-line index.
"""

from __future__ import annotations

import threading
import time

import pytest

from bookclean import (
    AIDetector,
    CleaningConfiguration,
    CleaningStep,
    DetectionKind,
    DetectionResult,
    DetectedRegion,
    LineRange,
    RegionType,
)

# =============================================================================
# SAMPLE BOOK
# =============================================================================

TITLE = "The Orchard Keeper"
AUTHOR = "Margaret Ellison"
RUNNING_HEAD = "THE ORCHARD KEEPER"

FRONT_MATTER = [
    f"# {TITLE}",
    "",
    f"by {AUTHOR}",
    "",
    f"Copyright © 1998 {AUTHOR}",
    "All rights reserved.",
    "ISBN 978-0-00-000000-0",
    "First published by Meridian Press",
    "Printed in the United Kingdom",
    "",
    "No part of this book may be reproduced without permission.",
    "",
    "For my mother, who kept the orchard.",
    "",
    "## Preface",
    "",
    "This book began as a set of notes kept during a long winter.",
    "The farm it describes no longer exists in the form shown here.",
    "Several of the people in it asked not to be named.",
    "Their wishes have been respected throughout.",
    "",
    "The orchards were planted by my grandfather after the war.",
    "He kept careful records of every tree and every harvest.",
    "Those records were the starting point for what follows.",
    "",
    "I owe thanks to many neighbours for their patience.",
    "They answered questions that must have seemed very strange.",
    "Any mistakes that remain are my own.",
    "",
    "## A Note on Sources",
    "",
    "Letters quoted in the text are held by the county archive.",
    "Spelling has been modernised where the meaning was unclear.",
    "Place names follow the usage of the period.",
    "",
    "Weights and measures are given as they were recorded.",
    "Prices have not been converted to modern values.",
    "",
    AUTHOR,
    "Hereford, in the spring",
    "",
    "What the orchard gives, the orchard keeps.",
    "An old saying from the valley",
    "",
    "",
]
FRONT_MATTER_LINES = len(FRONT_MATTER)  # 45

_SUBJECTS = ("The old keeper", "Her younger brother", "The morning light", "A quiet neighbour")
_VERBS = ("walked slowly past", "thought again about", "returned at last to", "spoke softly of")
_OBJECTS = (
    "the northern orchard",
    "the empty barn",
    "the winter road",
    "the stone wall",
    "the crooked fence",
    "the cider press",
)
_ORDINALS = ("first", "second", "third", "fourth", "fifth", "sixth")

CHAPTERS = 6
PARAGRAPHS_PER_CHAPTER = 4
LINES_PER_PARAGRAPH = 4
CITATION = "(Ellison, 1994)"

INDEX = {
    "A": ("Apple orchards, 12, 45", "Archives, county, 88", "Autumn harvest, 23-25", "Axes and saws, 61"),
    "B": ("Barn, the empty, 14, 70", "Bees, 102", "Boundary walls, 57", "Brother, younger, 9, 31"),
    "E": ("Ellison family, 3, 19", "Enclosures, 40", "Evening work, 66", "Exports, 91"),
    "G": ("Gardens, kitchen, 27", "Grafting, 35-37", "Grandfather, 2, 11", "Grazing rights, 84"),
    "H": ("Harvest records, 22", "Hedges, 48", "Hereford market, 95", "Horses, 73"),
}


def prose_line(chapter: int, paragraph: int, line: int, citation: bool = False) -> str:
    obj = _OBJECTS[(chapter + paragraph + line) % len(_OBJECTS)]
    middle = f" {CITATION}" if citation else ""
    return (
        f"{_SUBJECTS[line]} {_VERBS[paragraph]} {obj}{middle} "
        f"during the {_ORDINALS[chapter]} season."
    )


def build_book(
    with_page_numbers: bool = False,
    with_running_heads: bool = False,
    with_citations: bool = False,
    with_index: bool = True,
) -> str:
    """
    Assemble the sample book.

    Page numbers and running heads sit between the second and third
    paragraph of every chapter; citations go on the second line of each
    chapter's first paragraph.
    """
    lines = list(FRONT_MATTER)
    page = 3
    for chapter in range(CHAPTERS):
        lines += [f"# Chapter {chapter + 1}", ""]
        for paragraph in range(PARAGRAPHS_PER_CHAPTER):
            for line in range(LINES_PER_PARAGRAPH):
                cite = with_citations and paragraph == 0 and line == 1
                lines.append(prose_line(chapter, paragraph, line, citation=cite))
            lines.append("")
            if paragraph == 1 and (with_page_numbers or with_running_heads):
                if with_running_heads:
                    lines.append(RUNNING_HEAD)
                if with_page_numbers:
                    lines.append(str(page))
                    page += 7
                lines.append("")
    if with_index:
        lines += ["## Index", ""]
        for letter, entries in INDEX.items():
            lines.append(letter)
            lines.extend(entries)
            lines.append("")
    return "\n".join(lines)


def only_steps(*steps: CleaningStep, **overrides) -> CleaningConfiguration:
    """A configuration with every optional step off except the given ones."""
    config = CleaningConfiguration(**overrides)
    for step in CleaningStep:
        config.toggle_step(step, step in steps)
    return config


# =============================================================================
# FAKE DETECTORS
# =============================================================================


class ScriptedDetector(AIDetector):
    """Answers a fixed set of detection kinds with canned results."""

    name = "scripted"

    def __init__(self, answers: dict[DetectionKind, DetectionResult]):
        self.answers = answers
        self.calls: list[DetectionKind] = []

    def supports(self, kind):
        return kind in self.answers

    def detect(self, kind, content_window, context_hints):
        self.calls.append(kind)
        return self.answers[kind]


class SlowDetector(AIDetector):
    """Sleeps past any reasonable timeout before answering."""

    name = "slow"

    def __init__(self, kinds: set[DetectionKind], delay: float = 0.3):
        self.kinds = kinds
        self.delay = delay

    def supports(self, kind):
        return kind in self.kinds

    def detect(self, kind, content_window, context_hints):
        time.sleep(self.delay)
        return DetectionResult(kind=kind, confidence=0.9)


class StaggeredDetector(AIDetector):
    """
    Rewrites each window in upper case after a per-window delay.

    Windows listed first in ``delays`` can be made to finish last; the order
    in which windows actually finished is kept in ``finished``.
    """

    name = "staggered"

    def __init__(self, delays: dict[str, float]):
        self.delays = delays
        self.finished: list[str] = []
        self._lock = threading.Lock()

    def detect(self, kind, content_window, context_hints):
        time.sleep(self.delays.get(content_window, 0.0))
        with self._lock:
            self.finished.append(content_window)
        return DetectionResult(kind=kind, confidence=0.9, payload=content_window.upper())


class FailingDetector(AIDetector):
    """Raises on every request."""

    name = "failing"

    def detect(self, kind, content_window, context_hints):
        raise RuntimeError("backend exploded")


def front_matter_result(end: int = FRONT_MATTER_LINES, confidence: float = 0.95) -> DetectionResult:
    region = DetectedRegion(RegionType.FRONT_MATTER, LineRange(1, end), confidence)
    return DetectionResult(DetectionKind.FRONT_MATTER, confidence, regions=(region,))


def citations_result(confidence: float) -> DetectionResult:
    return DetectionResult(
        DetectionKind.CITATIONS,
        confidence,
        patterns={"citation_patterns": [r"\(Ellison, \d{4}\)"]},
    )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def book() -> str:
    """Return the plain sample book (front matter, chapters, index)."""
    return build_book()


@pytest.fixture(scope="session")
def noisy_book() -> str:
    """Return the sample book with page numbers and running heads."""
    return build_book(with_page_numbers=True, with_running_heads=True)


@pytest.fixture(scope="session")
def cited_book() -> str:
    """Return the sample book with inline author-year citations."""
    return build_book(with_citations=True)


@pytest.fixture
def default_config() -> CleaningConfiguration:
    """Return a fresh default CleaningConfiguration."""
    return CleaningConfiguration()
