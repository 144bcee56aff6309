"""
bookclean: Clean OCR book text into training-ready or readable documents.

A sixteen-step pipeline strips front and back matter, page numbers, running
heads, citations, notes and auxiliary lists, then reflows, splits and
reassembles the text with metadata and chapter markers. Every removal is
validated and recorded in an auditable ledger.

Example:
    >>> import bookclean
    >>> config = bookclean.CleaningConfiguration.for_preset("training")
    >>> result = bookclean.clean_text(raw_text, config)
    >>> print(result.text)
    >>> result.context.total_lines_removed
    312
"""

from bookclean.checkpoints import Checkpoint, CheckpointResult, PhaseMetrics, checkpoint_for
from bookclean.confidence import ConfidenceRating, ConfidenceTracker
from bookclean.config import (
    CleaningConfiguration,
    PipelineOptions,
    PresetConfiguration,
    PresetType,
    ThresholdCategory,
    get_preset,
    load_configuration,
    resolve_configuration,
    resolve_threshold,
    save_configuration,
    suggested_preset,
)
from bookclean.content import ContentType, ContentTypeFlags
from bookclean.context import (
    AccumulatedContext,
    ConfirmedBoundary,
    ContentTransformation,
    ContextSnapshot,
    ContextView,
    FlaggedContent,
    RemovalRecord,
    UserNotification,
)
from bookclean.detection import AIDetector, DetectionKind, DetectionResult, NullDetector
from bookclean.exceptions import (
    BookCleanError,
    ConfigurationError,
    DetectionError,
    DetectorTimeoutError,
    DetectorUnavailableError,
    InvalidDetectionError,
    InvariantViolationError,
    PipelineCancelled,
    PipelineError,
    StepFailedError,
)
from bookclean.hints import DetectedRegion, RegionType, StructureHints
from bookclean.models import (
    ChapterMarkerStyle,
    CheckpointType,
    CleaningStep,
    CleaningStepStatus,
    DocumentMetadata,
    EndMarkerStyle,
    FlagReason,
    LineRange,
    MetadataFormat,
    PipelinePhase,
    ProcessingMethod,
    StepState,
    ValidationMethod,
)
from bookclean.patterns import DetectedPatterns
from bookclean.pipeline import (
    CleaningPipeline,
    PipelineResult,
    RunStatus,
    clean_text,
    create_pipeline,
)
from bookclean.progress import CleaningProgress, ProgressSnapshot

__version__ = "0.1.0"
__all__ = [
    # Main API
    "clean_text",
    "create_pipeline",
    "CleaningPipeline",
    "PipelineResult",
    "RunStatus",
    # Configuration
    "CleaningConfiguration",
    "PipelineOptions",
    "PresetConfiguration",
    "PresetType",
    "ThresholdCategory",
    "get_preset",
    "load_configuration",
    "resolve_configuration",
    "resolve_threshold",
    "save_configuration",
    "suggested_preset",
    # Content type
    "ContentType",
    "ContentTypeFlags",
    # Steps & phases
    "CleaningStep",
    "CleaningStepStatus",
    "CheckpointType",
    "PipelinePhase",
    "ProcessingMethod",
    "StepState",
    # Ledger
    "AccumulatedContext",
    "ConfirmedBoundary",
    "ContentTransformation",
    "ContextSnapshot",
    "ContextView",
    "FlaggedContent",
    "RemovalRecord",
    "UserNotification",
    "FlagReason",
    "LineRange",
    "ValidationMethod",
    # Structure
    "DetectedPatterns",
    "DetectedRegion",
    "RegionType",
    "StructureHints",
    # Output
    "ChapterMarkerStyle",
    "DocumentMetadata",
    "EndMarkerStyle",
    "MetadataFormat",
    # Detection
    "AIDetector",
    "DetectionKind",
    "DetectionResult",
    "NullDetector",
    # Tracking
    "Checkpoint",
    "CheckpointResult",
    "PhaseMetrics",
    "checkpoint_for",
    "CleaningProgress",
    "ConfidenceRating",
    "ConfidenceTracker",
    "ProgressSnapshot",
    # Exceptions
    "BookCleanError",
    "ConfigurationError",
    "DetectionError",
    "DetectorTimeoutError",
    "DetectorUnavailableError",
    "InvalidDetectionError",
    "InvariantViolationError",
    "PipelineCancelled",
    "PipelineError",
    "StepFailedError",
]
