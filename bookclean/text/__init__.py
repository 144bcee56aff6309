"""
Deterministic text operations.

Counting, whitespace and character cleanup, line removal, chunking, reflow,
paragraph splitting and final document assembly. None of these call the AI
detector.
"""

from bookclean.text.counting import (
    count_changes,
    count_cleaned_words,
    count_lines,
    count_words,
    normalize_to_plain_text,
)
from bookclean.text.dictionary import AdaptiveDictionary, LearnedWord
from bookclean.text.linebreak import LineBreakCandidate, LineBreakRejoiner, LineBreakStats
from bookclean.text.operations import (
    ReflowStats,
    SpecialCharacterStats,
    TextBlock,
    TextChunk,
    chunk_content,
    clean_special_characters,
    group_consecutive,
    iter_blocks,
    merge_chunks,
    normalize_whitespace,
    optimize_paragraph_length,
    reflow_paragraphs,
    remove_line_ranges,
    remove_lines,
    split_long_paragraph,
    split_paragraphs,
)
from bookclean.text.structure import (
    AssembledDocument,
    DetectedHeading,
    apply_structure,
    detect_chapter_headings,
    detect_part_headings,
    insert_chapter_markers,
)

__all__ = [
    # Counting
    "count_changes",
    "count_cleaned_words",
    "count_lines",
    "count_words",
    "normalize_to_plain_text",
    # Hyphenation
    "AdaptiveDictionary",
    "LearnedWord",
    "LineBreakCandidate",
    "LineBreakRejoiner",
    "LineBreakStats",
    # Operations
    "ReflowStats",
    "SpecialCharacterStats",
    "TextBlock",
    "TextChunk",
    "chunk_content",
    "clean_special_characters",
    "group_consecutive",
    "iter_blocks",
    "merge_chunks",
    "normalize_whitespace",
    "optimize_paragraph_length",
    "reflow_paragraphs",
    "remove_line_ranges",
    "remove_lines",
    "split_long_paragraph",
    "split_paragraphs",
    # Assembly
    "AssembledDocument",
    "DetectedHeading",
    "apply_structure",
    "detect_chapter_headings",
    "detect_part_headings",
    "insert_chapter_markers",
]
