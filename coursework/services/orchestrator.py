"""Submit a learner's test pipeline and hand it to a background watch."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from coursework.config import Settings
from coursework.core.errors import StageNotFoundError
from coursework.jobs.render import render_pipeline_run
from coursework.jobs.watcher import OnSuccess, PipelineWatchRegistry, watch_pipeline_run
from coursework.services.pipelines.interface import PipelineExecutor
from coursework.storage.progress_repo import stages_until

logger = logging.getLogger(__name__)


async def trigger_pipeline(
  session: AsyncSession,
  settings: Settings,
  executor: PipelineExecutor,
  registry: PipelineWatchRegistry,
  *,
  repo: str,
  course: str,
  stage: str,
  on_success: OnSuccess,
) -> str:
  """Run the cumulative test plan for ``stage`` and watch it in the background.

  Submission errors propagate to the caller and no watch is started. The
  request that triggered the run returns as soon as the run is created.
  """
  stages = await stages_until(session, course, stage)
  # Release the read transaction before talking to the execution platform.
  await session.commit()
  if not stages:
    raise StageNotFoundError(f"Stage {stage} not found in course {course}")

  spec = render_pipeline_run(repo, course, stage, [item.slug for item in stages], settings)
  name = await executor.submit(spec)

  watch = watch_pipeline_run(
    executor,
    name,
    on_success,
    interval=settings.watch_interval_seconds,
    max_duration=settings.watch_max_seconds,
    max_consecutive_errors=settings.watch_max_consecutive_errors,
  )
  registry.spawn(name, watch)
  logger.info("Watching PipelineRun %s for repo=%s course=%s stage=%s (%d test cases)", name, repo, course, stage, len(stages))
  return name
