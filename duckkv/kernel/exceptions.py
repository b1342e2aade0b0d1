"""Exception hierarchy for duckkv.

All duckkv exceptions inherit from DuckKVError so callers can catch every
storage failure with a single except clause.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class DuckKVError(Exception):
    """Base exception for all duckkv errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(DuckKVError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("loader", "YAML file must be a mapping")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(DuckKVError):
    """Raised when a key or setting fails validation.

    Raised before any statement is queued, so a rejected call never leaves
    partial state behind.

    Examples
    --------
    Example usage::

        raise ValidationError("key", "must not be empty")
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        """Initialize validation error.

        Args
        ----
            field: Name of the field that failed validation
            constraint: Description of the validation constraint
            value: The invalid value (optional)
        """
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class BatchValidationError(ValidationError):
    """Raised when any key of a batch call is invalid.

    The whole batch is rejected before a statement is issued.
    """

    def __init__(self, index: int, error: ValidationError) -> None:
        """Initialize batch validation error.

        Args
        ----
            index: Position of the first invalid entry in the batch
            error: The underlying per-key validation failure
        """
        super().__init__(f"{error.field}[{index}]", error.constraint, error.value)
        self.index = index
        self.error = error


# ============================================================================
# Lifecycle & Connection Errors
# ============================================================================


class DisposedError(DuckKVError):
    """Raised when an operation is attempted on a disposed store."""

    def __init__(self, component: str = "DuckDBStore") -> None:
        super().__init__(f"{component} has been disposed and cannot be used")
        self.component = component


class StoreConnectionError(DuckKVError):
    """Raised when the database cannot be opened or a statement fails.

    The engine error is chained as ``__cause__``.

    Examples
    --------
    Example usage::

        raise StoreConnectionError("attach", "invalid encryption key") from exc
    """

    def __init__(self, operation: str, reason: str) -> None:
        """Initialize connection error.

        Args
        ----
            operation: What was being attempted (e.g. "open", "query")
            reason: Description of the failure
        """
        super().__init__(f"Database {operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


__all__ = [
    "BatchValidationError",
    "ConfigurationError",
    "DisposedError",
    "DuckKVError",
    "StoreConnectionError",
    "ValidationError",
]
