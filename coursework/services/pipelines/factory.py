from __future__ import annotations

from coursework.config import Settings
from coursework.services.pipelines.interface import PipelineExecutor
from coursework.services.pipelines.tekton import TektonPipelineExecutor


def get_pipeline_executor(settings: Settings) -> PipelineExecutor:
  """Factory to get the configured pipeline executor."""
  if settings.pipeline_provider == "tekton":
    return TektonPipelineExecutor(settings)
  raise ValueError(f"Unsupported pipeline provider: {settings.pipeline_provider}")
