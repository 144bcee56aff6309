"""
Configuration for bookclean cleaning runs.

Resolution happens in three layers, always in this order:

1. Preset base values (PresetType -> PresetConfiguration)
2. Explicit user overrides (plain attribute assignment or from_dict())
3. Content-type adjustments (resolve_configuration())

Content-type adjustments only ever restrict: they turn steps off or lower the
paragraph cap. Applying them twice, or in any order, gives the same result, and
they never re-enable a step the user turned off.

Confidence thresholds are resolved by one pure function, resolve_threshold().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from bookclean.content import ContentPrimaryType, ContentType, ContentTypeFlags
from bookclean.exceptions import ConfigurationError
from bookclean.models import (
    ALWAYS_ON_STEPS,
    ChapterMarkerStyle,
    CleaningStep,
    EndMarkerStyle,
    MetadataFormat,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PRESETS
# =============================================================================


class PresetType(Enum):
    DEFAULT = "default"
    TRAINING = "training"
    MINIMAL = "minimal"
    SCHOLARLY = "scholarly"


@dataclass(frozen=True)
class PresetConfiguration:
    """Base values a preset contributes to a configuration.

    Attributes:
        name: Preset identifier.
        description: Human-readable description.
        max_paragraph_words: Paragraph cap for optimization (0 = no limit).
        boundary_confidence_threshold: Minimum confidence to remove a region.
    """

    name: str
    description: str
    remove_auxiliary_lists: bool = False
    remove_citations: bool = False
    remove_footnotes_endnotes: bool = False
    max_paragraph_words: int = 250
    enable_paragraph_optimization: bool = True
    enable_chapter_segmentation: bool = True
    chapter_marker_style: ChapterMarkerStyle = ChapterMarkerStyle.HTML_COMMENTS
    end_marker_style: EndMarkerStyle = EndMarkerStyle.STANDARD
    boundary_confidence_threshold: float = 0.7
    remove_front_matter: bool = True
    remove_table_of_contents: bool = True
    remove_index: bool = True
    remove_back_matter: bool = True


DEFAULT_PRESET = PresetConfiguration(
    name="default",
    description="Balanced cleaning for general reading and archiving",
)

TRAINING_PRESET = PresetConfiguration(
    name="training",
    description="Aggressive cleaning for language-model training data",
    remove_auxiliary_lists=True,
    remove_citations=True,
    remove_footnotes_endnotes=True,
    chapter_marker_style=ChapterMarkerStyle.TOKEN_STYLE,
    end_marker_style=EndMarkerStyle.TOKEN,
)

MINIMAL_PRESET = PresetConfiguration(
    name="minimal",
    description="Light touch: keep structure, remove only obvious artifacts",
    max_paragraph_words=0,
    enable_paragraph_optimization=False,
    enable_chapter_segmentation=False,
    chapter_marker_style=ChapterMarkerStyle.NONE,
    end_marker_style=EndMarkerStyle.MINIMAL,
    boundary_confidence_threshold=0.85,  # Only remove what we are sure about
    remove_front_matter=False,
    remove_table_of_contents=False,
    remove_index=False,
    remove_back_matter=False,
)

SCHOLARLY_PRESET = PresetConfiguration(
    name="scholarly",
    description="Academic texts: strip references, keep appendices and index",
    remove_auxiliary_lists=True,
    remove_citations=True,
    remove_footnotes_endnotes=True,
    max_paragraph_words=300,
    remove_index=False,
    remove_back_matter=False,
)

PRESETS: dict[PresetType, PresetConfiguration] = {
    PresetType.DEFAULT: DEFAULT_PRESET,
    PresetType.TRAINING: TRAINING_PRESET,
    PresetType.MINIMAL: MINIMAL_PRESET,
    PresetType.SCHOLARLY: SCHOLARLY_PRESET,
}


def get_preset(preset: PresetType | str) -> PresetConfiguration:
    """Look up a preset by type or name.

    Raises:
        ConfigurationError: If the name is not a known preset.
    """
    if isinstance(preset, str):
        try:
            preset = PresetType(preset)
        except ValueError as e:
            valid = [p.value for p in PresetType]
            raise ConfigurationError(f"Unknown preset {preset!r}, expected one of {valid}") from e
    return PRESETS[preset]


def suggested_preset(flags: ContentTypeFlags) -> PresetType:
    """Suggest a preset for classified content."""
    if flags.is_academic and flags.confidence >= 0.7:
        return PresetType.SCHOLARLY
    if flags.primary_type is ContentPrimaryType.POETRY:
        return PresetType.MINIMAL
    if flags.is_legal:
        return PresetType.SCHOLARLY
    return PresetType.DEFAULT


# Fields whose value comes straight from the preset (preset attr -> config attr).
_PRESET_FIELDS: dict[str, str] = {
    "remove_auxiliary_lists": "remove_auxiliary_lists",
    "remove_citations": "remove_citations",
    "remove_footnotes_endnotes": "remove_footnotes_endnotes",
    "max_paragraph_words": "max_paragraph_words",
    "enable_paragraph_optimization": "optimize_paragraph_length",
    "enable_chapter_segmentation": "enable_chapter_segmentation",
    "chapter_marker_style": "chapter_marker_style",
    "end_marker_style": "end_marker_style",
    "boundary_confidence_threshold": "boundary_confidence_threshold",
    "remove_front_matter": "remove_front_matter",
    "remove_table_of_contents": "remove_table_of_contents",
    "remove_index": "remove_index",
    "remove_back_matter": "remove_back_matter",
}

# Steps every preset turns on.
_ALWAYS_ENABLED_BY_PRESET = (
    "extract_metadata",
    "remove_page_numbers",
    "remove_headers_footers",
    "clean_special_characters",
    "reflow_paragraphs",
    "add_structure",
)


# =============================================================================
# CLEANING CONFIGURATION
# =============================================================================


@dataclass
class CleaningConfiguration:
    """
    Which steps run and with what parameters.

    Field names double as the serialized keys. The orchestrator reads this,
    never writes it.

    Example:
        >>> config = CleaningConfiguration.for_preset(PresetType.TRAINING)
        >>> config.is_step_enabled(CleaningStep.REMOVE_CITATIONS)
        True
        >>> config.remove_citations = False
        >>> config.differs_from_preset
        True
    """

    base_preset: PresetType | None = PresetType.DEFAULT

    # Step switches (names match CleaningStep.config_key)
    extract_metadata: bool = True
    remove_page_numbers: bool = True
    remove_headers_footers: bool = True
    remove_front_matter: bool = True
    remove_table_of_contents: bool = True
    remove_back_matter: bool = True
    remove_index: bool = True
    remove_auxiliary_lists: bool = False
    remove_citations: bool = False
    remove_footnotes_endnotes: bool = False
    clean_special_characters: bool = True
    reflow_paragraphs: bool = True
    optimize_paragraph_length: bool = True
    add_structure: bool = True

    # Parameters
    max_paragraph_words: int = 250  # 0 = no limit
    metadata_format: MetadataFormat = MetadataFormat.YAML
    chapter_marker_style: ChapterMarkerStyle = ChapterMarkerStyle.HTML_COMMENTS
    end_marker_style: EndMarkerStyle = EndMarkerStyle.STANDARD
    enable_chapter_segmentation: bool = True

    # Confidence thresholds
    boundary_confidence_threshold: float = 0.7
    citation_confidence_threshold: float = 0.7
    footnote_confidence_threshold: float = 0.7

    # Content-type behavior
    respect_content_type_flags: bool = True
    adjust_for_childrens_content: bool = True
    preserve_code_blocks: bool = True
    preserve_math_symbols: bool = True
    content_type: ContentType = ContentType.AUTO_DETECT

    def __post_init__(self):
        """Validate configuration."""
        if self.max_paragraph_words < 0:
            raise ValueError(f"max_paragraph_words must be >= 0, got {self.max_paragraph_words}")
        for name in (
            "boundary_confidence_threshold",
            "citation_confidence_threshold",
            "footnote_confidence_threshold",
        ):
            value = getattr(self, name)
            if value < 0.0 or value > 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")

    @classmethod
    def for_preset(cls, preset: PresetType | str) -> CleaningConfiguration:
        """Create a configuration holding exactly the preset's values."""
        config = cls()
        config.apply_preset(preset)
        return config

    # -------------------------------------------------------------------------
    # Presets
    # -------------------------------------------------------------------------

    def apply_preset(self, preset: PresetType | str) -> None:
        """Overwrite every preset-controlled setting with the preset's values."""
        values = get_preset(preset)
        self.base_preset = PresetType(values.name)
        for name in _ALWAYS_ENABLED_BY_PRESET:
            setattr(self, name, True)
        for preset_attr, config_attr in _PRESET_FIELDS.items():
            setattr(self, config_attr, getattr(values, preset_attr))

    def reset_to_preset(self) -> None:
        if self.base_preset is not None:
            self.apply_preset(self.base_preset)

    @property
    def differs_from_preset(self) -> bool:
        """Whether any preset-controlled setting differs from the base preset."""
        if self.base_preset is None:
            return True
        return bool(self.modified_settings)

    @property
    def modified_settings(self) -> list[str]:
        """Names of preset-controlled settings changed from the base preset."""
        if self.base_preset is None:
            return []
        reference = CleaningConfiguration.for_preset(self.base_preset)
        names = list(_ALWAYS_ENABLED_BY_PRESET) + list(_PRESET_FIELDS.values())
        return [name for name in names if getattr(self, name) != getattr(reference, name)]

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def is_step_enabled(self, step: CleaningStep) -> bool:
        if step in ALWAYS_ON_STEPS:
            return True
        return bool(getattr(self, step.config_key))

    def toggle_step(self, step: CleaningStep, enabled: bool) -> None:
        """Turn a step on or off. Always-on steps ignore the request."""
        if step in ALWAYS_ON_STEPS:
            logger.debug("Ignoring toggle of always-on step %s", step.display_name)
            return
        setattr(self, step.config_key, enabled)

    @property
    def enabled_steps(self) -> list[CleaningStep]:
        return [step for step in CleaningStep if self.is_step_enabled(step)]

    @property
    def estimated_complexity(self) -> int:
        return sum(step.estimated_relative_time for step in self.enabled_steps)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.value if isinstance(value, Enum) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CleaningConfiguration:
        """
        Build a configuration from serialized keys.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        enum_fields = {
            "base_preset": PresetType,
            "metadata_format": MetadataFormat,
            "chapter_marker_style": ChapterMarkerStyle,
            "end_marker_style": EndMarkerStyle,
            "content_type": ContentType,
        }
        kwargs = dict(data)
        try:
            for name, enum_cls in enum_fields.items():
                if kwargs.get(name) is not None:
                    kwargs[name] = enum_cls(kwargs[name])
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e)) from e


def load_configuration(path: Path | str) -> CleaningConfiguration:
    """Read a configuration from a YAML file."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return CleaningConfiguration.from_dict(data)


def save_configuration(config: CleaningConfiguration, path: Path | str) -> None:
    """Write a configuration to a YAML file."""
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            config.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False
        )


# =============================================================================
# CONTENT-TYPE RESOLUTION
# =============================================================================

CHILDRENS_PARAGRAPH_CAP = 150


def resolve_configuration(
    config: CleaningConfiguration,
    flags: ContentTypeFlags | None = None,
) -> CleaningConfiguration:
    """
    Apply content-type adjustments and return the resolved configuration.

    Uses the declared content type on the configuration and, when given, the
    classifier's flags. The input configuration is not modified.

    Adjustments only restrict, so resolving an already-resolved configuration
    returns an equal one.
    """
    if not config.respect_content_type_flags:
        return replace(config)

    disabled = set(config.content_type.disabled_steps)
    if flags is not None:
        disabled |= flags.disabled_steps

    changes: dict[str, Any] = {}
    for step in disabled:
        if step not in ALWAYS_ON_STEPS and getattr(config, step.config_key):
            changes[step.config_key] = False

    childrens = config.content_type is ContentType.CHILDRENS or (
        flags is not None and flags.is_childrens
    )
    if childrens and config.adjust_for_childrens_content:
        current = config.max_paragraph_words
        capped = CHILDRENS_PARAGRAPH_CAP if current == 0 else min(current, CHILDRENS_PARAGRAPH_CAP)
        if capped != current:
            changes["max_paragraph_words"] = capped

    if changes:
        logger.info("Content-type adjustments: %s", ", ".join(sorted(changes)))
    return replace(config, **changes)


# =============================================================================
# THRESHOLD POLICY
# =============================================================================


class ThresholdCategory(Enum):
    BOUNDARY = "boundary"
    CITATION = "citation"
    FOOTNOTE = "footnote"


_THRESHOLD_FIELDS: dict[ThresholdCategory, str] = {
    ThresholdCategory.BOUNDARY: "boundary_confidence_threshold",
    ThresholdCategory.CITATION: "citation_confidence_threshold",
    ThresholdCategory.FOOTNOTE: "footnote_confidence_threshold",
}

# Minimum thresholds per content type. Floors only ever raise a threshold.
_THRESHOLD_FLOORS: dict[ContentType, dict[ThresholdCategory, float]] = {
    ContentType.LEGAL: {ThresholdCategory.CITATION: 0.8, ThresholdCategory.FOOTNOTE: 0.8},
    ContentType.ACADEMIC: {ThresholdCategory.CITATION: 0.75},
    ContentType.RELIGIOUS_SACRED: {ThresholdCategory.BOUNDARY: 0.8},
}


def _content_types_for(
    config: CleaningConfiguration, flags: ContentTypeFlags | None
) -> set[ContentType]:
    types = {config.content_type}
    if flags is not None:
        if flags.is_legal:
            types.add(ContentType.LEGAL)
        if flags.is_academic:
            types.add(ContentType.ACADEMIC)
        if flags.has_religious_verses:
            types.add(ContentType.RELIGIOUS_SACRED)
    return types


def resolve_threshold(
    category: ThresholdCategory,
    config: CleaningConfiguration,
    flags: ContentTypeFlags | None = None,
) -> float:
    """
    Resolve the confidence threshold for one category.

    The configured value already carries the preset default and any user
    override; content-type floors can only raise it.

    Example:
        >>> config = CleaningConfiguration(content_type=ContentType.LEGAL)
        >>> resolve_threshold(ThresholdCategory.CITATION, config)
        0.8
    """
    threshold = getattr(config, _THRESHOLD_FIELDS[category])
    if not config.respect_content_type_flags:
        return threshold
    for content_type in _content_types_for(config, flags):
        floor = _THRESHOLD_FLOORS.get(content_type, {}).get(category)
        if floor is not None:
            threshold = max(threshold, floor)
    return threshold


# =============================================================================
# RUN OPTIONS
# =============================================================================


@dataclass
class PipelineOptions:
    """
    Execution options for a pipeline run (not part of the cleaning config).

    Example:
        >>> options = PipelineOptions(detector_timeout=10.0, max_workers=2)
    """

    detector_timeout: float = 30.0  # Seconds per detector call
    max_workers: int = 4  # Threads for chunked steps
    chunk_target_lines: int = 2500
    continue_on_failure: bool = True
    poll_interval: float = 0.05  # Seconds between cancel checks while waiting
    document_id: str | None = None

    def __post_init__(self):
        """Validate options."""
        if self.detector_timeout <= 0:
            raise ValueError(f"detector_timeout must be > 0, got {self.detector_timeout}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.chunk_target_lines < 100:
            raise ValueError(
                f"chunk_target_lines must be >= 100, got {self.chunk_target_lines}"
            )
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
