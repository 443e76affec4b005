"""
Exception classes for the regional cascade and imputation system.

This module defines the exception hierarchy used by the cascade engine,
the imputation pipeline and the configuration layer.
"""

from typing import Optional, Dict, Any, List, Sequence


class RegionalCascadeError(Exception):
    """
    Base exception class for the regional cascade system.

    All custom exceptions in the system inherit from this base class.
    """

    def __init__(self, message: str, error_code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def __str__(self) -> str:
        """String representation of the exception."""
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" (Context: {context_str})"

        return base_msg


class PreconditionError(RegionalCascadeError):
    """
    Raised when an input violates a precondition of an operation.

    Precondition violations are fatal: they are raised at the point of
    detection and never retried.
    """

    def __init__(self, message: str, error_code: str = "PRECONDITION", **kwargs):
        super().__init__(message, error_code=error_code, context=kwargs.get('context', {}))


class MissingColumnError(PreconditionError):
    """
    Raised when a required column is absent from an input table.
    """

    def __init__(self, message: str, missing_columns: Optional[Sequence[str]] = None, **kwargs):
        """
        Initialize missing column error.

        Args:
            message: Error message
            missing_columns: Names of the columns that were not found
        """
        context = kwargs.get('context', {})
        if missing_columns:
            context['missing_columns'] = list(missing_columns)
        self.missing_columns = list(missing_columns or [])

        super().__init__(message, error_code="MISSING_COLUMN", context=context)


class LengthMismatchError(PreconditionError):
    """
    Raised when parallel sequences (values and period labels) differ in length.
    """

    def __init__(self, message: str, expected: Optional[int] = None,
                 actual: Optional[int] = None, **kwargs):
        context = kwargs.get('context', {})
        if expected is not None:
            context['expected'] = expected
        if actual is not None:
            context['actual'] = actual

        super().__init__(message, error_code="LENGTH_MISMATCH", context=context)


class GeoLevelError(PreconditionError):
    """
    Raised when an entity id cannot be mapped to a geographic level.
    """

    def __init__(self, message: str, entity_id: Optional[str] = None, **kwargs):
        context = kwargs.get('context', {})
        if entity_id is not None:
            context['entity_id'] = entity_id

        super().__init__(message, error_code="GEO_LEVEL", context=context)


class HierarchyError(PreconditionError):
    """
    Raised when the hierarchy reference table is malformed.

    This covers missing reference columns, duplicated fine ids and ancestor
    codes that do not agree with the fine id they belong to.
    """

    def __init__(self, message: str, validation_failures: Optional[List[str]] = None, **kwargs):
        """
        Initialize hierarchy error.

        Args:
            message: Error message
            validation_failures: List of specific validation failures
        """
        context = kwargs.get('context', {})
        if validation_failures:
            context['validation_failures'] = validation_failures

        super().__init__(message, error_code="HIERARCHY", context=context)


class ForecastError(RegionalCascadeError):
    """
    Raised by a single forecasting strategy when it cannot produce a forecast.

    The forecaster catches this and moves on to the next strategy in its
    chain, so callers of the forecaster never see it for valid input.
    """

    def __init__(self, message: str, strategy: Optional[str] = None,
                 fit_details: Optional[Dict[str, Any]] = None, **kwargs):
        """
        Initialize forecast error.

        Args:
            message: Error message
            strategy: Name of the strategy that failed
            fit_details: Information about the failed fit
        """
        context = kwargs.get('context', {})
        if strategy:
            context['strategy'] = strategy
        if fit_details:
            context.update(fit_details)
        self.strategy = strategy

        super().__init__(message, error_code="FORECAST", context=context)


class ConfigurationError(RegionalCascadeError):
    """
    Raised when configuration is invalid or incomplete.

    This exception is raised for configuration validation failures,
    missing required settings, or incompatible parameter combinations.
    """

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None, **kwargs):
        """
        Initialize configuration error.

        Args:
            message: Error message
            validation_errors: List of configuration validation errors
        """
        context = kwargs.get('context', {})
        if validation_errors:
            context['validation_errors'] = validation_errors
        self.validation_errors = list(validation_errors or [])

        super().__init__(message, error_code="CONFIGURATION", context=context)


def require_columns(columns, required: Sequence[str], table: str = "data") -> None:
    """
    Raise MissingColumnError if any of ``required`` is not in ``columns``.

    Args:
        columns: Available column names
        required: Column names that must be present
        table: Name of the table, used in the error message
    """
    available = set(columns)
    missing = [col for col in required if col not in available]
    if missing:
        raise MissingColumnError(
            f"{table} is missing required column(s): {', '.join(missing)}",
            missing_columns=missing
        )
