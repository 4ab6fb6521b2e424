"""
Error taxonomy for the AI flows.

Every flow surfaces failures to its immediate caller as one of these types.
Nothing here retries; the HTTP layer maps each type to a status code.
"""

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class FlowError(Exception):
    """Base class for errors raised by flows and their collaborators."""

    error_code = "FLOW_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AnalysisUnavailable(FlowError):
    """The model call failed or returned output that does not fit the schema."""

    error_code = "ANALYSIS_UNAVAILABLE"
    status_code = 502


class ImageGenerationUnavailable(FlowError):
    """The image model returned no image."""

    error_code = "IMAGE_GENERATION_UNAVAILABLE"
    status_code = 502


class NotFound(FlowError):
    """A referenced patient, prescription or inventory document is absent."""

    error_code = "NOT_FOUND"
    status_code = 404


class ValidationError(FlowError):
    """Caller input is missing required fields or is malformed."""

    error_code = "VALIDATION_ERROR"
    status_code = 422


def parse_input(model_cls: type[ModelT], payload: ModelT | dict[str, Any]) -> ModelT:
    """
    Coerce a plain JSON-shaped payload into a request model.

    Raises:
        ValidationError: If the payload does not satisfy the model.
    """
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model_cls.__name__}",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e
