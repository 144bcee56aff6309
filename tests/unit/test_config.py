"""
Unit tests for presets, cleaning configuration, content-type resolution
and threshold policy.
"""

import pytest
import yaml

from bookclean.config import (
    CleaningConfiguration,
    PipelineOptions,
    PresetType,
    ThresholdCategory,
    get_preset,
    load_configuration,
    resolve_configuration,
    resolve_threshold,
    save_configuration,
    suggested_preset,
)
from bookclean.content import ContentPrimaryType, ContentType, ContentTypeFlags
from bookclean.exceptions import ConfigurationError
from bookclean.models import ChapterMarkerStyle, CleaningStep, EndMarkerStyle


class TestPresets:
    """Test preset lookup and application."""

    def test_get_preset_by_name(self):
        """Presets can be looked up by their string name."""
        assert get_preset("training").name == "training"
        assert get_preset(PresetType.MINIMAL).boundary_confidence_threshold == 0.85

    def test_unknown_preset(self):
        """An unknown preset name is a configuration error."""
        with pytest.raises(ConfigurationError, match="Unknown preset"):
            get_preset("aggressive")

    def test_training_preset(self):
        """Training turns on every reference removal and uses token markers."""
        config = CleaningConfiguration.for_preset(PresetType.TRAINING)
        assert config.remove_citations
        assert config.remove_footnotes_endnotes
        assert config.remove_auxiliary_lists
        assert config.chapter_marker_style is ChapterMarkerStyle.TOKEN_STYLE
        assert config.end_marker_style is EndMarkerStyle.TOKEN

    def test_minimal_preset_keeps_structure(self):
        """Minimal keeps front matter, index and back matter."""
        config = CleaningConfiguration.for_preset("minimal")
        assert not config.remove_front_matter
        assert not config.remove_index
        assert not config.optimize_paragraph_length
        assert config.max_paragraph_words == 0

    def test_apply_preset_sets_base(self):
        """Applying a preset records it as the base preset."""
        config = CleaningConfiguration()
        config.apply_preset("scholarly")
        assert config.base_preset is PresetType.SCHOLARLY
        assert config.max_paragraph_words == 300

    def test_apply_preset_re_enables_common_steps(self):
        """Steps every preset uses are switched back on."""
        config = CleaningConfiguration()
        config.remove_page_numbers = False
        config.apply_preset("default")
        assert config.remove_page_numbers

    def test_suggested_preset(self):
        """Confident academic content suggests the scholarly preset."""
        academic = ContentTypeFlags(is_academic=True, confidence=0.8)
        poetry = ContentTypeFlags(has_poetry=True, primary_type=ContentPrimaryType.POETRY)
        assert suggested_preset(academic) is PresetType.SCHOLARLY
        assert suggested_preset(poetry) is PresetType.MINIMAL
        assert suggested_preset(ContentTypeFlags.PROSE) is PresetType.DEFAULT


class TestCleaningConfiguration:
    """Test step switches, modification tracking and validation."""

    def test_defaults(self, default_config):
        """Reference removals are off by default; structural removals are on."""
        assert default_config.remove_front_matter
        assert not default_config.remove_citations
        assert default_config.base_preset is PresetType.DEFAULT

    def test_always_on_steps_cannot_be_disabled(self, default_config):
        """Toggling an always-on step has no effect."""
        default_config.toggle_step(CleaningStep.ANALYZE_STRUCTURE, False)
        assert default_config.is_step_enabled(CleaningStep.ANALYZE_STRUCTURE)
        assert default_config.is_step_enabled(CleaningStep.FINAL_QUALITY_REVIEW)

    def test_toggle_step(self, default_config):
        """Toggling a regular step flips its switch."""
        default_config.toggle_step(CleaningStep.REMOVE_INDEX, False)
        assert not default_config.remove_index
        assert CleaningStep.REMOVE_INDEX not in default_config.enabled_steps

    def test_enabled_steps_keep_order(self, default_config):
        """Enabled steps come back in execution order."""
        steps = default_config.enabled_steps
        assert steps == sorted(steps, key=lambda s: s.value)
        assert steps[0] is CleaningStep.ANALYZE_STRUCTURE
        assert steps[-1] is CleaningStep.FINAL_QUALITY_REVIEW

    def test_estimated_complexity(self):
        """Complexity sums the relative times of enabled steps."""
        config = CleaningConfiguration()
        for step in CleaningStep:
            config.toggle_step(step, False)
        # Analysis and final review are always on: 2 + 2
        assert config.estimated_complexity == 4

    def test_unmodified_preset(self):
        """A fresh preset configuration reports no modifications."""
        config = CleaningConfiguration.for_preset("training")
        assert not config.differs_from_preset
        assert config.modified_settings == []

    def test_modified_settings(self):
        """Changing a preset-controlled field is reported."""
        config = CleaningConfiguration.for_preset("training")
        config.remove_citations = False
        assert config.differs_from_preset
        assert config.modified_settings == ["remove_citations"]

    def test_no_base_preset_always_differs(self):
        """A configuration without a base preset is always custom."""
        config = CleaningConfiguration(base_preset=None)
        assert config.differs_from_preset
        assert config.modified_settings == []

    def test_reset_to_preset(self):
        """reset_to_preset() discards overrides."""
        config = CleaningConfiguration.for_preset("training")
        config.remove_citations = False
        config.reset_to_preset()
        assert config.remove_citations

    def test_rejects_negative_paragraph_cap(self):
        """max_paragraph_words cannot be negative."""
        with pytest.raises(ValueError, match="max_paragraph_words"):
            CleaningConfiguration(max_paragraph_words=-1)

    def test_rejects_threshold_out_of_range(self):
        """Thresholds must lie within 0.0 and 1.0."""
        with pytest.raises(ValueError, match="citation_confidence_threshold"):
            CleaningConfiguration(citation_confidence_threshold=1.5)


class TestSerialization:
    """Test dict and YAML round trips."""

    def test_to_dict_uses_enum_values(self, default_config):
        """Enums are serialized by value."""
        data = default_config.to_dict()
        assert data["base_preset"] == "default"
        assert data["chapter_marker_style"] == "html_comments"
        assert data["content_type"] == "auto_detect"

    def test_from_dict(self):
        """from_dict() converts enum values back."""
        config = CleaningConfiguration.from_dict(
            {"end_marker_style": "token", "content_type": "poetry", "remove_index": False}
        )
        assert config.end_marker_style is EndMarkerStyle.TOKEN
        assert config.content_type is ContentType.POETRY
        assert not config.remove_index

    def test_from_dict_unknown_keys(self):
        """Unknown keys are rejected by name."""
        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            CleaningConfiguration.from_dict({"remove_everything": True})

    def test_from_dict_bad_value(self):
        """Invalid enum values become configuration errors."""
        with pytest.raises(ConfigurationError):
            CleaningConfiguration.from_dict({"chapter_marker_style": "fancy"})

    def test_yaml_file(self, tmp_path):
        """A saved configuration loads back equal."""
        config = CleaningConfiguration.for_preset("scholarly")
        config.remove_citations = False
        path = tmp_path / "clean.yaml"
        save_configuration(config, path)
        assert load_configuration(path) == config

    def test_yaml_file_must_be_mapping(self, tmp_path):
        """A YAML list is not a configuration."""
        path = tmp_path / "clean.yaml"
        path.write_text(yaml.safe_dump(["remove_index"]), encoding="utf-8")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            load_configuration(path)

    def test_empty_yaml_gives_defaults(self, tmp_path):
        """An empty file gives the default configuration."""
        path = tmp_path / "clean.yaml"
        path.write_text("", encoding="utf-8")
        assert load_configuration(path) == CleaningConfiguration()


class TestResolveConfiguration:
    """Test content-type adjustments."""

    def test_poetry_disables_reflow_and_optimize(self):
        """Poetry keeps its line breaks and stanza lengths."""
        config = CleaningConfiguration(content_type=ContentType.POETRY)
        resolved = resolve_configuration(config)
        assert not resolved.reflow_paragraphs
        assert not resolved.optimize_paragraph_length
        assert config.reflow_paragraphs  # input untouched

    def test_flags_disable_citation_removal(self):
        """Academic flags keep citations even when the preset removes them."""
        config = CleaningConfiguration.for_preset("training")
        flags = ContentTypeFlags(is_academic=True, confidence=0.9)
        assert not resolve_configuration(config, flags).remove_citations

    def test_never_re_enables(self):
        """A step the user turned off stays off."""
        config = CleaningConfiguration(reflow_paragraphs=False)
        assert not resolve_configuration(config).reflow_paragraphs

    def test_idempotent(self):
        """Resolving twice gives the same configuration."""
        config = CleaningConfiguration(content_type=ContentType.LEGAL)
        flags = ContentTypeFlags(has_poetry=True, is_childrens=True)
        once = resolve_configuration(config, flags)
        assert resolve_configuration(once, flags) == once

    def test_childrens_cap(self):
        """Children's content caps paragraphs at 150 words."""
        config = CleaningConfiguration(content_type=ContentType.CHILDRENS)
        assert resolve_configuration(config).max_paragraph_words == 150

    def test_childrens_cap_replaces_unlimited(self):
        """An unlimited cap becomes 150 for children's content."""
        config = CleaningConfiguration(max_paragraph_words=0)
        flags = ContentTypeFlags(is_childrens=True)
        assert resolve_configuration(config, flags).max_paragraph_words == 150

    def test_childrens_adjustment_can_be_turned_off(self):
        """adjust_for_childrens_content=False leaves the cap alone."""
        config = CleaningConfiguration(
            content_type=ContentType.CHILDRENS, adjust_for_childrens_content=False
        )
        assert resolve_configuration(config).max_paragraph_words == 250

    def test_flags_ignored_when_not_respected(self):
        """respect_content_type_flags=False disables every adjustment."""
        config = CleaningConfiguration(
            content_type=ContentType.POETRY, respect_content_type_flags=False
        )
        resolved = resolve_configuration(config)
        assert resolved == config
        assert resolved is not config


class TestResolveThreshold:
    """Test the threshold policy."""

    def test_configured_value(self, default_config):
        """Without floors the configured threshold is used."""
        assert resolve_threshold(ThresholdCategory.BOUNDARY, default_config) == 0.7

    def test_legal_floor(self):
        """Legal content raises the citation threshold to 0.8."""
        config = CleaningConfiguration(content_type=ContentType.LEGAL)
        assert resolve_threshold(ThresholdCategory.CITATION, config) == 0.8

    def test_floor_never_lowers(self):
        """A user threshold above the floor is kept."""
        config = CleaningConfiguration(
            content_type=ContentType.LEGAL, citation_confidence_threshold=0.95
        )
        assert resolve_threshold(ThresholdCategory.CITATION, config) == 0.95

    def test_flags_contribute_floors(self, default_config):
        """Religious flags raise the boundary threshold."""
        flags = ContentTypeFlags(has_religious_verses=True)
        assert resolve_threshold(ThresholdCategory.BOUNDARY, default_config, flags) == 0.8

    def test_floors_ignored_when_not_respected(self):
        """Floors do not apply when content flags are not respected."""
        config = CleaningConfiguration(
            content_type=ContentType.LEGAL, respect_content_type_flags=False
        )
        assert resolve_threshold(ThresholdCategory.CITATION, config) == 0.7


class TestContentTypeFlags:
    """Test classifier flags."""

    def test_summary_for_plain_prose(self):
        """No flags reads as standard prose."""
        assert ContentTypeFlags().summary == "Standard prose content"
        assert not ContentTypeFlags().has_special_content

    def test_summary_lists_flags(self):
        """Active flags are listed by label."""
        flags = ContentTypeFlags(has_poetry=True, is_childrens=True)
        assert flags.summary == "Poetry, Children's"

    def test_disabled_steps(self):
        """Code and legal flags disable reflow and reference removals."""
        flags = ContentTypeFlags(has_code=True, is_legal=True)
        assert flags.disabled_steps == {
            CleaningStep.REFLOW_PARAGRAPHS,
            CleaningStep.REMOVE_CITATIONS,
            CleaningStep.REMOVE_FOOTNOTES_ENDNOTES,
        }

    def test_dialogue_disables_reflow(self):
        """Dialogue-dominated text keeps its line breaks."""
        flags = ContentTypeFlags(primary_type=ContentPrimaryType.DIALOGUE)
        assert flags.disabled_steps == {CleaningStep.REFLOW_PARAGRAPHS}

    def test_recommended_paragraph_words(self):
        """Children's text gets shorter paragraphs than academic text."""
        assert ContentTypeFlags(is_childrens=True).recommended_max_paragraph_words == 150
        assert ContentTypeFlags(is_academic=True).recommended_max_paragraph_words == 300
        assert ContentTypeFlags().recommended_max_paragraph_words == 250

    def test_confidence_validation(self):
        """Confidence outside 0..1 is rejected."""
        with pytest.raises(ValueError, match="confidence"):
            ContentTypeFlags(confidence=1.2)

    def test_from_content_type(self):
        """Declared types translate into flags; auto-detect does not."""
        flags = ContentTypeFlags.from_content_type(ContentType.POETRY)
        assert flags.has_poetry
        assert flags.should_skip_reflow
        assert ContentTypeFlags.from_content_type(ContentType.AUTO_DETECT) is None
        assert ContentTypeFlags.from_content_type(ContentType.MIXED) is None

    def test_content_type_properties(self):
        """Poetry and drama treat line breaks as content."""
        assert ContentType.POETRY.line_breaks_are_content
        assert ContentType.DRAMA_SCREENPLAY.line_breaks_are_content
        assert not ContentType.PROSE_FICTION.line_breaks_are_content
        assert ContentType.LEGAL.has_meaningful_citations


class TestPipelineOptions:
    """Test run option validation."""

    def test_defaults(self):
        """Defaults are valid."""
        options = PipelineOptions()
        assert options.continue_on_failure
        assert options.max_workers == 4

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"detector_timeout": 0}, "detector_timeout"),
            ({"max_workers": 0}, "max_workers"),
            ({"chunk_target_lines": 50}, "chunk_target_lines"),
            ({"poll_interval": 0}, "poll_interval"),
        ],
    )
    def test_invalid_options(self, kwargs, field):
        """Out-of-range options are rejected by name."""
        with pytest.raises(ValueError, match=field):
            PipelineOptions(**kwargs)
