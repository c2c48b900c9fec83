"""
Domain exceptions for commission configuration and resolution
"""
from typing import Optional


class CommissionError(Exception):
    """Base class for all commission domain errors"""

    status_code = 400

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(CommissionError):
    """Invalid input such as an out-of-range rate or an inverted date range"""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.field = field


class NotFoundError(CommissionError):
    """Referenced header or detail does not exist"""

    status_code = 404


class ConflictError(CommissionError):
    """
    Write rejected by the current state of the configuration.
    Retryable by the operator after reloading.
    """

    status_code = 409


class AmbiguousRuleError(ConflictError):
    """Two candidate details tie on both specificity and priority"""


class NoApplicableRuleError(CommissionError):
    """
    No detail applies to the transaction context.

    Indicates a configuration defect (usually a missing general catch-all).
    """

    status_code = 404
