"""
Pipeline Errors
===============

Exception hierarchy shared by all pipeline stages.

    - ParseError: malformed row, unparseable date/number (aborts the run)
    - DegenerateInputError: trend fitting input with no usable variance
    - UndefinedRatioError: division by zero while deriving a ratio
    - AggregationError: a running total over a measure with negative values
"""

from typing import Optional


class PipelineError(ValueError):
    """Base class for all pipeline errors."""


class ParseError(PipelineError):
    """Raised when input data cannot be parsed under the declared schema."""

    def __init__(
        self,
        message: str,
        row: Optional[int] = None,
        column: Optional[str] = None
    ):
        self.row = row
        self.column = column

        location = []
        if row is not None:
            location.append(f"row {row}")
        if column is not None:
            location.append(f"column '{column}'")

        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)


class DegenerateInputError(PipelineError):
    """Raised when a trend cannot be fit (fewer than two distinct x values)."""


class UndefinedRatioError(PipelineError):
    """Raised when a ratio has a zero or missing denominator."""


class AggregationError(PipelineError):
    """Raised when a cumulative series cannot be built from an aggregate."""
