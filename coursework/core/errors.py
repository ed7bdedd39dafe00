"""Domain errors raised by progression, signing and pipeline code.

Each class maps to one failure category so transport layers can decide whether
an outcome is a client error, a benign race, or a platform failure.
"""

from __future__ import annotations


class ProgressError(Exception):
  """Base class for stage progression failures."""

  message = "Progression error"

  def __init__(self, message: str | None = None) -> None:
    super().__init__(message or self.message)


class NotFoundError(ProgressError):
  message = "Not found"


class EnrollmentNotFoundError(NotFoundError):
  message = "Enrollment not found"


class StageNotFoundError(NotFoundError):
  message = "Stage not found"


class OrderingViolationError(ProgressError):
  """A completion attempt that the current state does not allow; expected under races."""


class StageAlreadyCompletedError(OrderingViolationError):
  message = "Stage is already completed"


class StageNotInProgressError(OrderingViolationError):
  message = "Stage must be in progress to complete"


class StageOutOfOrderError(OrderingViolationError):
  message = "Cannot complete a stage out of order"


class StageConflictError(ProgressError):
  """Another transaction already created the next stage's progress record."""

  message = "User already has a record for this stage"


class InvalidSignatureError(ProgressError):
  message = "Invalid signature"


class SigningKeyMissingError(RuntimeError):
  """The process-wide signing secret is not configured."""


class PipelineError(Exception):
  """Base class for execution platform failures."""


class PipelineSubmissionError(PipelineError):
  """Creating a pipeline run failed."""


class PipelineUnavailableError(PipelineError):
  """The platform could not be reached or answered with a retryable status."""


class PipelineStatusError(PipelineError):
  """The platform definitively refused a status read, e.g. the run no longer exists."""
