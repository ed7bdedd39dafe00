"""Handling of version-control push notifications."""

from __future__ import annotations

import functools
import logging
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursework.config import Settings
from coursework.core.errors import StageConflictError
from coursework.jobs.watcher import PipelineWatchRegistry
from coursework.schema.sql import StageStatus
from coursework.services.enrollments import activate_enrollment
from coursework.services.orchestrator import trigger_pipeline
from coursework.services.pipelines.interface import PipelineExecutor
from coursework.services.stages import complete_stage_detached
from coursework.storage.progress_repo import get_enrollment_by_id, get_stage_by_id, get_user_stage_by_stage_id
from coursework.utils.ids import parse_enrollment_id

logger = logging.getLogger(__name__)

PushOutcome = Literal["ignored", "unknown_repository", "activated", "triggered", "course_finished"]


async def handle_push_event(
  session: AsyncSession,
  session_factory: async_sessionmaker[AsyncSession],
  settings: Settings,
  executor: PipelineExecutor,
  registry: PipelineWatchRegistry,
  *,
  ref: str,
  repo_name: str,
  owner: str | None,
  is_template: bool = False,
) -> PushOutcome:
  """Activate an enrollment on its first push, otherwise test its current stage.

  Learner repositories are named after their enrollment id. At most one pipeline
  is submitted per call; pipeline submission errors propagate.
  """
  if ref != settings.main_ref:
    logger.debug("Ignoring push to %s on %s", ref, repo_name)
    return "ignored"

  if is_template or owner == settings.template_owner:
    logger.debug("Ignoring push to template repository %s/%s", owner, repo_name)
    return "ignored"

  enrollment_id = parse_enrollment_id(repo_name)
  row = await get_enrollment_by_id(session, enrollment_id) if enrollment_id else None
  if row is None:
    logger.error("Push for repository %s matches no enrollment", repo_name)
    return "unknown_repository"
  enrollment, course = row

  if not enrollment.activated:
    try:
      await activate_enrollment(session, enrollment, course)
    except StageConflictError:
      logger.info("Enrollment %s already activated by a concurrent push", enrollment_id)
    return "activated"

  stage = await get_stage_by_id(session, enrollment.current_stage_id) if enrollment.current_stage_id else None
  if stage is None:
    logger.warning("Enrollment %s is activated without a current stage", enrollment.id)
    return "course_finished"

  user_stage = await get_user_stage_by_stage_id(session, enrollment.id, stage.id)
  if user_stage is not None and user_stage.status == StageStatus.COMPLETED.value:
    logger.info("Enrollment %s has completed course %s; no pipeline triggered", enrollment.id, course.slug)
    return "course_finished"

  on_success = functools.partial(complete_stage_detached, session_factory, enrollment.user_id, course.slug, stage.slug)
  await trigger_pipeline(session, settings, executor, registry, repo=repo_name, course=course.slug, stage=stage.slug, on_success=on_success)
  return "triggered"
