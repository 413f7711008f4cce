"""Typed extraction errors.

Stages raise these exceptions; :mod:`bulletin_pipeline.pipeline` converts them
once into :class:`~bulletin_pipeline.models.Failure` values so no raw exception
crosses the engine boundary.
"""

from __future__ import annotations

from bulletin_pipeline.models import ErrorKind, Failure


class ExtractionError(ValueError):
    """Base class for every failure the engine knows how to report."""

    kind: ErrorKind = ErrorKind.ACQUISITION_FAILURE

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_failure(self) -> Failure:
        """Return the boundary representation of this error."""

        return Failure(kind=self.kind, reason=self.reason)


class NoHeaderDetected(ExtractionError):
    """No grade-table header row was found in the document."""

    kind = ErrorKind.NO_HEADER_DETECTED


class NoDelimiterMatch(ExtractionError):
    """The document could not be split into any student block."""

    kind = ErrorKind.NO_DELIMITER_MATCH


class UnparsableGrade(ExtractionError):
    """A grade cell holds text that is neither a number nor an absence marker.

    Recoverable: record builders turn it into an absent grade.
    """

    kind = ErrorKind.UNPARSABLE_GRADE

    def __init__(self, text: str, detail: str = "not a grade") -> None:
        super().__init__(f"Unparsable grade {text!r}: {detail}")
        self.text = text


class MissingRequiredColumnMapping(ExtractionError):
    """A tabular template lacks the name, subject or grade column index."""

    kind = ErrorKind.MISSING_REQUIRED_COLUMN_MAPPING


class InvalidTemplatePattern(ExtractionError):
    """A template field holds a regular expression that does not compile."""

    kind = ErrorKind.INVALID_TEMPLATE_PATTERN

    def __init__(self, field_name: str, pattern: str, detail: str) -> None:
        super().__init__(f"Invalid pattern for {field_name} ({pattern!r}): {detail}")
        self.field_name = field_name
        self.pattern = pattern


class AcquisitionFailure(ExtractionError):
    """The text-extraction primitive could not read the document at all."""

    kind = ErrorKind.ACQUISITION_FAILURE


class AcquisitionTimeout(ExtractionError):
    """The caller's time budget ran out before extraction finished."""

    kind = ErrorKind.ACQUISITION_TIMEOUT


class ExtractionCancelled(ExtractionError):
    """The caller cancelled extraction through its cancellation token."""

    kind = ErrorKind.CANCELLED


class NoRecordsExtracted(ExtractionError):
    """The document was read but yielded no student record."""

    kind = ErrorKind.NO_RECORDS
