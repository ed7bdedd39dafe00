from __future__ import annotations

from typing import Protocol

from coursework.jobs.models import PipelineRunStatus
from coursework.jobs.render import PipelineRunSpec


class PipelineExecutor(Protocol):
  """Interface for the platform that runs test pipelines."""

  async def submit(self, spec: PipelineRunSpec) -> str:
    """Create the run and return its name."""
    ...

  async def get_status(self, name: str) -> PipelineRunStatus:
    """Read the current status of a run by name."""
    ...

  async def aclose(self) -> None:
    """Release any pooled connections."""
    ...
