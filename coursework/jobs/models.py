"""Domain models for pipeline runs and their watch loops."""

from __future__ import annotations

from typing import Literal

PipelineRunStatus = Literal["running", "succeeded", "failed"]
WatchOutcome = Literal["succeeded", "failed", "error", "abandoned"]
