"""
Exception hierarchy for the to-do service.

The HTTP layer maps these to status codes; messages on AuthorizationError
and ValidationError are shown to the user verbatim.
"""


class TodoAppError(Exception):
    """Base class for all application errors."""
    pass


class StoreError(TodoAppError):
    """Raised when the document store rejects or fails an operation."""
    pass


class NotFoundError(StoreError):
    """Raised when a keyed record does not exist."""
    pass


class AuthError(TodoAppError):
    """Raised on sign-up / sign-in failures."""
    pass


class AuthorizationError(TodoAppError):
    """Raised when a user lacks permission for an action."""
    pass


class ValidationError(TodoAppError):
    """Raised when request input cannot be used."""

    def __init__(self, message: str, manual_entry: bool = False):
        super().__init__(message)
        self.manual_entry = manual_entry


class LLMError(TodoAppError):
    """Raised when the hosted model call fails or returns no text."""

    def __init__(self, message: str, status: int = 0, error_type: str = ""):
        super().__init__(message)
        self.status = status
        self.error_type = error_type


class VisionError(TodoAppError):
    """Raised when no extraction strategy produced text."""
    pass


class ImageValidationError(VisionError):
    """Raised for unsupported or oversized uploads."""
    pass


class OCRError(TodoAppError):
    """Raised by the local OCR engine."""
    pass
