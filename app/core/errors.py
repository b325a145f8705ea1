"""Domain error taxonomy shared across services, workers and routes."""

from __future__ import annotations


class PolarisError(Exception):
  """Base class for errors raised by the report engine."""


class RequestValidationFailed(PolarisError):
  """Caller input was rejected; maps to a 4xx response."""

  def __init__(self, message: str, *, status_code: int = 400) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code


class UpstreamProviderError(PolarisError):
  """An upstream model provider could not produce a usable completion."""


class AllProvidersFailedError(UpstreamProviderError):
  """Every provider in the fallback chain failed."""

  def __init__(self, reasons: list[str]) -> None:
    self.reasons = list(reasons)
    super().__init__(f"All providers failed: {'; '.join(self.reasons)}")


class NotificationDeliveryError(PolarisError):
  """The completion webhook could not be delivered."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class PersistenceError(PolarisError):
  """A storage backend failed to read or write state."""

  def __init__(self, message: str, *, retryable: bool = True) -> None:
    super().__init__(message)
    self.retryable = retryable


class JobStoreError(PersistenceError):
  """The job store failed to read or write a job record."""


class ReportStoreError(PersistenceError):
  """The report store failed to read or write a report record."""


class ResourceNotFound(RequestValidationFailed):
  """A requested job or report does not exist."""

  def __init__(self, message: str) -> None:
    super().__init__(message, status_code=404)
