"""Report-card extraction pipeline package."""

from .config import DEFAULT_SETTINGS, ExtractionSettings
from .mapping.template import MappingTemplate
from .models import (
    AverageSource,
    BatchResult,
    ClassDataset,
    DocumentResult,
    DocumentShape,
    ErrorKind,
    ExtractionResult,
    Failure,
    ResultStatus,
    StudentRecord,
    SubjectFeedback,
    TermInfo,
    TextFragment,
)

__all__ = [
    "AverageSource",
    "BatchResult",
    "ClassDataset",
    "DEFAULT_SETTINGS",
    "DocumentResult",
    "DocumentShape",
    "ErrorKind",
    "ExtractionResult",
    "ExtractionSettings",
    "Failure",
    "MappingTemplate",
    "ResultStatus",
    "StudentRecord",
    "SubjectFeedback",
    "TermInfo",
    "TextFragment",
]
