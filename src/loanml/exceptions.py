"""
Exception hierarchy for loanml.

Backend errors are wrapped into these types at the handle boundary so
callers can distinguish data problems from parameter problems.
"""


class LoanMLError(Exception):
    """Base class for all loanml errors."""


class SessionClosedError(LoanMLError):
    """Raised when a handle is used after its session shut down or released it."""


class DataImportError(LoanMLError):
    """Raised when a dataset cannot be read from any configured source."""


class SchemaError(LoanMLError):
    """Raised when columns are missing or have an unusable type."""


class InvalidParameterError(LoanMLError):
    """Raised when a hyperparameter or request argument is invalid."""


class EvaluationError(LoanMLError):
    """Raised when a metric is undefined for the scored data."""
