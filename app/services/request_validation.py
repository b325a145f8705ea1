from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.errors import RequestValidationFailed

ModelT = TypeVar("ModelT", bound=BaseModel)


def _format_validation_error(exc: ValidationError) -> str:
  """Flatten pydantic errors into one client-facing line without echoing input."""
  parts = []
  for error in exc.errors():
    location = ".".join(str(item) for item in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    parts.append(f"{location}: {message}" if location else message)
  return "; ".join(parts) or "Invalid request body"


def _parse_request(model: type[ModelT], payload: Any, *, invalid_message: str | None = None) -> ModelT:
  """Validate a decoded JSON body, raising RequestValidationFailed (400) on bad input."""
  if not isinstance(payload, dict):
    raise RequestValidationFailed(invalid_message or "Request body must be a JSON object")
  try:
    return model.model_validate(payload)
  except ValidationError as exc:
    raise RequestValidationFailed(invalid_message or _format_validation_error(exc)) from exc
