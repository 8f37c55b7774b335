"""
Domain errors for the prompt-evaluation pipeline.

=== FOUR KINDS OF FAILURE ===

    PromptLabError
        ├── ValidationError   bad input shape, rejected before any model call
        ├── ParseError        the model answered, but not with a usable JSON array
        ├── ServiceError      the model or the database call itself failed
        └── NotFoundError     nothing stored under the requested key

Every stage of an attempt raises one of these. The coordinator lets them
through untouched and wraps anything else in a ServiceError, so the caller
always sees exactly one typed error per submission.

Note: ValidationError here is NOT pydantic's ValidationError. Modules that
need both import pydantic's under an alias.
"""

from typing import Optional


class PromptLabError(Exception):
    """Base class. `message` is safe to show to the end user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PromptLabError):
    pass


class ParseError(PromptLabError):
    """
    Raised when model output can't be turned into predictions.

    `raw_text` keeps the full model output for logging; the message only
    carries a snippet of it.
    """

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class ServiceError(PromptLabError):
    pass


class NotFoundError(PromptLabError):
    pass
