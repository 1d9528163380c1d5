"""
Error taxonomy for the LUT video transformer.

Every error carries a stable machine-readable code plus a human-readable
message. Optional details (validation errors, tracebacks) are diagnostic only.
"""

from typing import Any, Dict, Optional


class TransformError(Exception):
    """Base exception for all transformer errors."""

    code = "TRANSFORM_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error the way it is reported to callers."""
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidArgumentError(TransformError):
    """Bad intensity, crop size or request field."""

    code = "INVALID_ARGUMENT"


# =============================================================================
# LUT Parsing
# =============================================================================

class LutParseError(TransformError):
    """Base class for .cube parsing failures."""

    code = "LUT_PARSE_ERROR"

    def __init__(self, message: str, line_number: Optional[int] = None,
                 details: Optional[Any] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message, details)
        self.line_number = line_number


class MissingOrInvalidSizeError(LutParseError):
    """No LUT_3D_SIZE line, or it declared a non-positive size."""

    code = "MISSING_OR_INVALID_SIZE"


class SampleCountMismatchError(LutParseError):
    """Number of data values does not match the declared size."""

    code = "SAMPLE_COUNT_MISMATCH"

    def __init__(self, size: int, actual_values: int, source: Optional[str] = None):
        self.size = size
        self.expected_triples = size ** 3
        self.actual_triples = actual_values // 3
        self.expected_values = self.expected_triples * 3
        self.actual_values = actual_values
        where = f" in {source}" if source else ""
        message = (
            f"LUT_3D_SIZE {size}{where}: expected {self.expected_values}, "
            f"got {actual_values} values ({self.actual_triples} RGB triplets found, "
            f"{self.expected_triples} expected)"
        )
        super().__init__(message, details={
            "expected_triples": self.expected_triples,
            "actual_triples": self.actual_triples,
        })


class MalformedNumberError(LutParseError):
    """A numeric token could not be parsed."""

    code = "MALFORMED_NUMBER"


class MalformedLineError(LutParseError):
    """A data line has fewer than three components."""

    code = "MALFORMED_LINE"


# =============================================================================
# Geometry
# =============================================================================

class InvalidDimensionsError(TransformError):
    """Source frame dimensions are non-positive or non-finite."""

    code = "INVALID_DIMENSIONS"


# =============================================================================
# Collaborators
# =============================================================================

class AssetNotFoundError(TransformError):
    """Asset key does not resolve to a file."""

    code = "ASSET_NOT_FOUND"


class IOFailureError(TransformError):
    """Reading an asset or probing a video failed."""

    code = "IO_FAILURE"


class NoVideoTrackError(TransformError):
    """Input has no decodable video stream."""

    code = "NO_VIDEO_TRACK"


class ExportFailedError(TransformError):
    """Decoding, compositing or encoding failed."""

    code = "EXPORT_FAILED"


class ExportCancelledError(TransformError):
    """Export was cancelled before completion."""

    code = "EXPORT_CANCELLED"
