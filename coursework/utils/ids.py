"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_run_name() -> str:
  """Return a new pipeline run name; Kubernetes names must be lowercase DNS labels."""
  return str(uuid.uuid4())


def parse_enrollment_id(raw: str) -> uuid.UUID | None:
  """Parse a learner repository name into the enrollment id it encodes."""
  try:
    return uuid.UUID(raw)
  except (TypeError, ValueError):
    return None
