"""
Word and change counting.

The two word counts are deliberately asymmetric. The original count only
normalizes markdown formatting. The cleaned count also strips what assembly
adds (metadata block, chapter/part markers, dividers, end marker) so the
reduction reflects content actually removed.
"""

from __future__ import annotations

import re

_HEADER = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_BOLD_UNDERSCORE = re.compile(r"__([^_]+)__")
_ITALIC = re.compile(r"(?<![*\n])\*([^*\n]+)\*(?!\*)")
_ITALIC_UNDERSCORE = re.compile(r"(?<![_\n])_([^_\n]+)_(?!_)")
_IMAGE = re.compile(r"!\[.*?\]\(.*?\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_CODE = re.compile(r"`([^`]+)`")
_SPACES = re.compile(r"  +")

# Only key/value lines (and folded continuations) so dividers never pair up
_METADATA_BLOCK = re.compile(r"^---\n(?:[A-Za-z_]+:.*\n|[ \t]+.*\n)+---\n?", re.MULTILINE)
_STRUCTURAL_MARKERS = (
    re.compile(r"\*\*\*\s*<!--.*?-->"),
    re.compile(r"<!--\s*(CHAPTER|PART|END OF)\b.*?-->", re.DOTALL),
    re.compile(r"<CHAPTER>.*?</CHAPTER>", re.DOTALL),
    re.compile(r"<PART>.*?</PART>", re.DOTALL),
    re.compile(r"<END_DOCUMENT[^>]*>"),
    re.compile(r"^\[END\]$", re.MULTILINE),
    re.compile(r"^(---|\*\*\*)$", re.MULTILINE),
)


def normalize_to_plain_text(content: str) -> str:
    """Strip markdown formatting while keeping its words."""
    text = _HEADER.sub("", content)
    text = _BOLD.sub(r"\1", text)
    text = _BOLD_UNDERSCORE.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE.sub(r"\1", text)
    # Images before links: the link pattern would otherwise keep the alt text
    text = _IMAGE.sub("", text)
    text = _LINK.sub(r"\1", text)
    text = _CODE.sub(r"\1", text)
    text = _SPACES.sub(" ", text)
    return text.strip()


def count_words(content: str) -> int:
    """Word count of source text (markdown normalized)."""
    return len(normalize_to_plain_text(content).split())


def count_cleaned_words(content: str, metadata_block: str | None = None) -> int:
    """Word count of assembled output, ignoring what assembly added.

    Pass the exact metadata block when it is JSON or Markdown; a YAML block
    is recognised on its own.
    """
    if metadata_block:
        text = content.replace(metadata_block, "", 1)
    else:
        text = _METADATA_BLOCK.sub("", content, count=1)
    for pattern in _STRUCTURAL_MARKERS:
        text = pattern.sub("", text)
    return count_words(text)


def count_changes(original: str, modified: str) -> int:
    """Number of distinct lines present in only one of the two texts."""
    return len(set(original.split("\n")) ^ set(modified.split("\n")))


def count_lines(content: str) -> int:
    return len(content.split("\n")) if content else 0
