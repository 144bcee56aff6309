"""
Step 2: extract bibliographic metadata.

The detector's answer is preferred; fields it leaves empty are filled from a
scan of the opening lines (title, author, translator, ISBN, copyright year,
publisher). The text is never modified.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, fields, replace
from typing import Any, Mapping

from bookclean.detection import DetectionKind
from bookclean.models import CleaningStep, DocumentMetadata
from bookclean.steps.base import StepCollaborator, StepContext, StepOutcome, try_detect

logger = logging.getLogger(__name__)

OPENING_LINES = 120

_AUTHOR = re.compile(r"^(?:by|BY|By)\s+(.{2,80})$")
_TRANSLATOR = re.compile(r"^translated(?:\s+from\s+the\s+\w+)?\s+by\s+(.{2,80})$", re.IGNORECASE)
_EDITOR = re.compile(r"^edited(?:\s+and\s+\w+)?\s+by\s+(.{2,80})$", re.IGNORECASE)
_ISBN = re.compile(r"ISBN(?:-1[03])?:?\s*((?:97[89][-\s]?)?(?:\d[-\s]?){9}[\dXx])")
_COPYRIGHT_YEAR = re.compile(r"(?:©|\(c\)|copyright)\s*(?:©\s*)?(\d{4})", re.IGNORECASE)
_PUBLISHER = re.compile(r"\b(?:Press|Publishing|Publishers|Verlag|Éditions|Editions|Books)\b")
_EDITION = re.compile(r"^((?:First|Second|Third|Fourth|Fifth|\d+(?:st|nd|rd|th))\s+edition.*)$", re.IGNORECASE)

_NOT_TITLES = ("copyright", "contents", "table of contents", "isbn", "all rights", "published")
_METADATA_FIELDS = frozenset(f.name for f in fields(DocumentMetadata))


def _clean(line: str) -> str:
    return line.strip().lstrip("#").strip().strip("*_").strip()


def _is_title_candidate(line: str) -> bool:
    lowered = line.lower()
    if not 2 <= len(line) <= 100 or any(lowered.startswith(word) for word in _NOT_TITLES):
        return False
    if _AUTHOR.match(line) or re.fullmatch(r"[\divxlcdm.\s-]+", lowered):
        return False
    return any(ch.isalpha() for ch in line)


def extract_metadata_heuristically(text: str) -> DocumentMetadata:
    """
    Read bibliographic fields from the opening lines of a book.

    Example:
        >>> meta = extract_metadata_heuristically("# Walden\\n\\nby Henry David Thoreau\\n")
        >>> meta.title, meta.author
        ('Walden', 'Henry David Thoreau')
    """
    lines = [_clean(line) for line in text.split("\n")[:OPENING_LINES]]
    found: dict[str, Any] = {}

    title_index = None
    for index, line in enumerate(lines):
        if line and _is_title_candidate(line):
            found["title"] = line
            title_index = index
            break
    if title_index is not None:
        following = next((line for line in lines[title_index + 1 :] if line), "")
        if following and _is_title_candidate(following) and len(following) <= 80 and following[:1].isupper():
            if not _PUBLISHER.search(following) and not _EDITION.match(following):
                found["subtitle"] = following

    for line in lines:
        if not line:
            continue
        for key, pattern in (("author", _AUTHOR), ("translator", _TRANSLATOR), ("editor", _EDITOR)):
            match = pattern.match(line)
            if match and key not in found:
                found[key] = match.group(1).strip()
        if "isbn" not in found and (match := _ISBN.search(line)):
            found["isbn"] = re.sub(r"\s", "", match.group(1))
        if "publish_date" not in found and (match := _COPYRIGHT_YEAR.search(line)):
            found["publish_date"] = match.group(1)
        if "publisher" not in found and _PUBLISHER.search(line) and len(line) <= 80:
            found["publisher"] = line
        if "edition" not in found and (match := _EDITION.match(line)):
            found["edition"] = match.group(1)

    # A subtitle that turned out to be the author line is not a subtitle
    if found.get("subtitle") and _AUTHOR.match(found["subtitle"]):
        del found["subtitle"]

    signals = sum(1 for key in ("title", "author", "isbn", "publish_date") if key in found)
    found["confidence"] = min(0.9, 0.3 + 0.15 * signals) if found else 0.0
    return DocumentMetadata(**found)


def metadata_from_payload(payload: Any) -> DocumentMetadata | None:
    """Accept a DocumentMetadata or a mapping of its fields from the detector."""
    if isinstance(payload, DocumentMetadata):
        return payload
    if isinstance(payload, Mapping):
        known = {key: value for key, value in payload.items() if key in _METADATA_FIELDS}
        return DocumentMetadata(**known) if known else None
    return None


def merge_metadata(preferred: DocumentMetadata, fallback: DocumentMetadata) -> DocumentMetadata:
    """Fill the preferred record's empty fields from the fallback."""
    gaps = {
        key: value
        for key, value in asdict(fallback).items()
        if key != "confidence" and value and not getattr(preferred, key)
    }
    if preferred.title == "Untitled" and fallback.title != "Untitled":
        gaps["title"] = fallback.title
    return replace(preferred, **gaps)


class ExtractMetadataStep(StepCollaborator):
    step = CleaningStep.EXTRACT_METADATA

    def run(self, ctx: StepContext) -> StepOutcome:
        outcome = StepOutcome(text=ctx.text)
        local = extract_metadata_heuristically(ctx.text)

        result = try_detect(ctx, outcome, DetectionKind.METADATA)
        detected = metadata_from_payload(result.payload) if result is not None else None
        if result is not None and detected is None:
            outcome.warnings.append("Metadata detection returned no usable fields")

        if detected is not None:
            if not detected.confidence:
                detected = replace(detected, confidence=result.confidence)
            metadata = merge_metadata(detected, local)
            source = "detector"
        else:
            metadata = local
            source = "opening lines"

        outcome.metadata = metadata
        outcome.confidence = metadata.confidence
        outcome.log(
            f"Metadata from {source}: title={metadata.title!r}, author={metadata.author!r} "
            f"(confidence {metadata.confidence:.2f})"
        )
        logger.info("Extracted metadata for %r (%s)", metadata.title, source)
        return outcome
