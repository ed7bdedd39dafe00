"""Stage completion and learner-facing progress reads.

Completion is the single consumer behind three producers: the learner's own
request, the pipeline watch loop and the pipeline's completion webhook. All of
them call ``complete_stage`` so whichever arrives first advances the enrollment
and the rest observe an ordering violation.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursework.core.errors import (
  EnrollmentNotFoundError,
  NotFoundError,
  OrderingViolationError,
  StageAlreadyCompletedError,
  StageConflictError,
  StageNotFoundError,
  StageNotInProgressError,
  StageOutOfOrderError,
)
from coursework.schema.sql import Stage, StageStatus, TestResult
from coursework.storage import progress_repo
from coursework.storage.progress_repo import EnrollmentRecord, UserStageRecord, UserStageStatusRecord
from coursework.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)


class CompletionOutcome(str, Enum):
  COMPLETED = "completed"
  ALREADY_HANDLED = "already_handled"
  NOT_FOUND = "not_found"


@dataclass(slots=True)
class CompletionContext:
  """State read by the precondition checks and reused by the write phase."""

  enrollment_id: uuid.UUID
  course_id: uuid.UUID
  course_slug: str
  user_stage_id: uuid.UUID
  stage: Stage
  started_at: datetime.datetime


async def load_completion_context(session: AsyncSession, user_id: str, course_slug: str, stage_slug: str) -> CompletionContext:
  """Load the enrollment and stage progress, then check completion preconditions in order."""
  enrollment_row = await progress_repo.get_enrollment(session, user_id, course_slug)
  if enrollment_row is None:
    raise EnrollmentNotFoundError()
  enrollment, course = enrollment_row

  stage_row = await progress_repo.get_user_stage(session, enrollment.id, course.id, stage_slug)
  if stage_row is None:
    raise StageNotFoundError()
  user_stage, stage = stage_row

  if user_stage.status == StageStatus.COMPLETED.value:
    raise StageAlreadyCompletedError()

  if user_stage.status != StageStatus.IN_PROGRESS.value:
    raise StageNotInProgressError()

  if enrollment.current_stage_id != stage.id:
    raise StageOutOfOrderError()

  return CompletionContext(
    enrollment_id=enrollment.id,
    course_id=course.id,
    course_slug=course.slug,
    user_stage_id=user_stage.id,
    stage=stage,
    started_at=user_stage.started_at,
  )


async def apply_completion(session: AsyncSession, context: CompletionContext) -> UserStageRecord:
  """Mark the stage passed, open the next one and advance the enrollment in one transaction."""
  completed_at = progress_repo.utc_now()
  try:
    # A writer that read the same in-progress row and committed first leaves nothing to update.
    if not await progress_repo.mark_user_stage_completed(session, context.user_stage_id, completed_at=completed_at):
      raise StageAlreadyCompletedError()

    upcoming = await progress_repo.next_stage(session, context.course_id, context.stage.weight)
    if upcoming is not None:
      await progress_repo.insert_user_stage(session, context.enrollment_id, upcoming.id, started_at=completed_at)

    await progress_repo.advance_enrollment(session, context.enrollment_id, next_stage_id=upcoming.id if upcoming else None)
    await session.commit()
  except IntegrityError as exc:
    await session.rollback()
    raise StageConflictError() from exc
  except Exception:
    await session.rollback()
    raise

  logger.info(
    "Completed stage %s of course %s for enrollment %s; next=%s",
    context.stage.slug,
    context.course_slug,
    context.enrollment_id,
    upcoming.slug if upcoming else "none",
  )
  return UserStageRecord(
    course_slug=context.course_slug,
    stage_slug=context.stage.slug,
    status=StageStatus.COMPLETED.value,
    test=TestResult.PASSED.value,
    started_at=context.started_at,
    completed_at=completed_at,
  )


async def complete_stage(session: AsyncSession, user_id: str, course_slug: str, stage_slug: str) -> UserStageRecord:
  """Complete a learner's current stage.

  Raises a ``NotFoundError``, an ``OrderingViolationError`` subclass or
  ``StageConflictError``; on any of them nothing has been written.
  """
  try:
    context = await load_completion_context(session, user_id, course_slug, stage_slug)
  except Exception:
    await session.rollback()
    raise
  return await apply_completion(session, context)


async def complete_stage_detached(session_factory: async_sessionmaker[AsyncSession], user_id: str, course_slug: str, stage_slug: str) -> CompletionOutcome:
  """Run ``complete_stage`` outside a request, e.g. from a watch task or a webhook.

  Each attempt uses a fresh session. Ordering violations and conflicts are the
  expected result of the poll and webhook paths racing, so they are logged and
  reported as ``ALREADY_HANDLED`` instead of raised.
  """

  async def _attempt() -> UserStageRecord:
    async with session_factory() as session:
      return await complete_stage(session, user_id, course_slug, stage_slug)

  try:
    await execute_with_retry(operation_name="complete_stage", func=_attempt)
  except (OrderingViolationError, StageConflictError) as exc:
    logger.info("Stage completion skipped for user=%s course=%s stage=%s: %s", user_id, course_slug, stage_slug, exc)
    return CompletionOutcome.ALREADY_HANDLED
  except NotFoundError as exc:
    logger.error("Stage completion failed for user=%s course=%s stage=%s: %s", user_id, course_slug, stage_slug, exc)
    return CompletionOutcome.NOT_FOUND

  return CompletionOutcome.COMPLETED


async def get_enrollment_record(session: AsyncSession, user_id: str, course_slug: str) -> EnrollmentRecord:
  row = await progress_repo.get_enrollment(session, user_id, course_slug)
  if row is None:
    raise EnrollmentNotFoundError()
  enrollment, course = row
  return await progress_repo.to_enrollment_record(session, enrollment, course)


async def list_enrollment_records(session: AsyncSession, user_id: str) -> list[EnrollmentRecord]:
  rows = await progress_repo.list_enrollments(session, user_id)
  return [await progress_repo.to_enrollment_record(session, enrollment, course) for enrollment, course in rows]


async def list_user_stages(session: AsyncSession, user_id: str, course_slug: str) -> list[UserStageRecord]:
  row = await progress_repo.get_enrollment(session, user_id, course_slug)
  if row is None:
    raise EnrollmentNotFoundError()
  enrollment, course = row
  stages = await progress_repo.list_user_stages(session, enrollment.id)
  return [progress_repo.to_user_stage_record(user_stage, stage, course.slug) for user_stage, stage in stages]


async def get_user_stage(session: AsyncSession, user_id: str, course_slug: str, stage_slug: str) -> UserStageRecord:
  row = await progress_repo.get_enrollment(session, user_id, course_slug)
  if row is None:
    raise EnrollmentNotFoundError()
  enrollment, course = row
  stage_row = await progress_repo.get_user_stage(session, enrollment.id, course.id, stage_slug)
  if stage_row is None:
    raise StageNotFoundError()
  user_stage, stage = stage_row
  return progress_repo.to_user_stage_record(user_stage, stage, course.slug)


async def get_user_stage_status(session: AsyncSession, user_id: str, course_slug: str, stage_slug: str) -> UserStageStatusRecord:
  """Return the status pair polled by the learner's status stream."""
  record = await get_user_stage(session, user_id, course_slug, stage_slug)
  return UserStageStatusRecord(status=record.status, test=record.test)
