"""Enrollment activation on a learner's first push."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.core.errors import StageConflictError, StageNotFoundError
from coursework.schema.sql import Course, UserCourse, UserStage
from coursework.storage.progress_repo import first_stage, insert_user_stage, mark_enrollment_activated

logger = logging.getLogger(__name__)


async def activate_enrollment(session: AsyncSession, enrollment: UserCourse, course: Course) -> UserStage:
  """Start an enrollment on the lowest-weight stage of its course.

  The progress row, the stage pointer and the activated flag are committed together.
  A concurrent activation loses on the (enrollment, stage) uniqueness constraint and
  surfaces as ``StageConflictError`` with nothing written.
  """
  # Rollback expires loaded instances, so only these locals are safe to read afterwards.
  enrollment_id = enrollment.id
  course_id = course.id
  course_slug = course.slug
  try:
    stage = await first_stage(session, course_id)
    if stage is None:
      raise StageNotFoundError(f"Course {course_slug} has no stages")

    user_stage = await insert_user_stage(session, enrollment_id, stage.id)
    await mark_enrollment_activated(session, enrollment_id, current_stage_id=stage.id)
    await session.commit()
  except IntegrityError as exc:
    await session.rollback()
    logger.info("Enrollment %s of course %s was activated concurrently", enrollment_id, course_slug)
    raise StageConflictError() from exc
  except Exception:
    await session.rollback()
    raise

  logger.info("Activated enrollment %s on stage %s of course %s", enrollment_id, stage.slug, course_slug)
  return user_stage
