"""Query helpers over enrollments and stage progress.

All helpers take the caller's ``AsyncSession`` and never commit, so one logical
operation (activation or completion) can compose several of them inside a single
transaction.
"""

from __future__ import annotations

import datetime
import uuid

import msgspec
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursework.schema.sql import Course, Stage, StageStatus, TestResult, UserCourse, UserStage


class EnrollmentRecord(msgspec.Struct):
  """Enrollment snapshot for API responses."""

  id: str
  user_id: str
  course_slug: str
  current_stage_slug: str | None
  completed_stage_count: int
  activated: bool
  finished: bool
  started_at: datetime.datetime | None


class UserStageRecord(msgspec.Struct):
  """Stage progress snapshot for API responses and status streams."""

  course_slug: str
  stage_slug: str
  status: str
  test: str
  started_at: datetime.datetime
  completed_at: datetime.datetime | None


class UserStageStatusRecord(msgspec.Struct):
  status: str
  test: str


def utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def to_user_stage_record(user_stage: UserStage, stage: Stage, course_slug: str) -> UserStageRecord:
  return UserStageRecord(
    course_slug=course_slug,
    stage_slug=stage.slug,
    status=user_stage.status,
    test=user_stage.test,
    started_at=user_stage.started_at,
    completed_at=user_stage.completed_at,
  )


async def get_enrollment(session: AsyncSession, user_id: str, course_slug: str) -> tuple[UserCourse, Course] | None:
  """Fetch a learner's enrollment for a course together with the course row."""
  stmt = select(UserCourse, Course).join(Course, Course.id == UserCourse.course_id).where(UserCourse.user_id == user_id, Course.slug == course_slug).execution_options(populate_existing=True)
  row = (await session.execute(stmt)).one_or_none()
  if row is None:
    return None
  return row[0], row[1]


async def get_enrollment_by_id(session: AsyncSession, enrollment_id: uuid.UUID) -> tuple[UserCourse, Course] | None:
  """Fetch an enrollment by primary key; learner repositories are named after it."""
  stmt = select(UserCourse, Course).join(Course, Course.id == UserCourse.course_id).where(UserCourse.id == enrollment_id).execution_options(populate_existing=True)
  row = (await session.execute(stmt)).one_or_none()
  if row is None:
    return None
  return row[0], row[1]


async def list_enrollments(session: AsyncSession, user_id: str) -> list[tuple[UserCourse, Course]]:
  """Return every enrollment of a learner with its course, oldest first."""
  stmt = select(UserCourse, Course).join(Course, Course.id == UserCourse.course_id).where(UserCourse.user_id == user_id).order_by(UserCourse.started_at.asc(), Course.slug.asc()).execution_options(populate_existing=True)
  rows = (await session.execute(stmt)).all()
  return [(row[0], row[1]) for row in rows]


async def count_course_stages(session: AsyncSession, course_id: uuid.UUID) -> int:
  stmt = select(func.count()).select_from(Stage).where(Stage.course_id == course_id)
  return (await session.execute(stmt)).scalar_one()


async def get_stage_by_id(session: AsyncSession, stage_id: uuid.UUID) -> Stage | None:
  return await session.get(Stage, stage_id)


async def get_user_stage(session: AsyncSession, enrollment_id: uuid.UUID, course_id: uuid.UUID, stage_slug: str) -> tuple[UserStage, Stage] | None:
  """Fetch the progress row for one stage of an enrollment."""
  stmt = (
    select(UserStage, Stage)
    .join(Stage, Stage.id == UserStage.stage_id)
    .where(UserStage.user_course_id == enrollment_id, Stage.course_id == course_id, Stage.slug == stage_slug)
    .execution_options(populate_existing=True)
  )
  row = (await session.execute(stmt)).one_or_none()
  if row is None:
    return None
  return row[0], row[1]


async def get_user_stage_by_stage_id(session: AsyncSession, enrollment_id: uuid.UUID, stage_id: uuid.UUID) -> UserStage | None:
  stmt = select(UserStage).where(UserStage.user_course_id == enrollment_id, UserStage.stage_id == stage_id).execution_options(populate_existing=True)
  return (await session.execute(stmt)).scalar_one_or_none()


async def list_user_stages(session: AsyncSession, enrollment_id: uuid.UUID) -> list[tuple[UserStage, Stage]]:
  """Return every progress row of an enrollment in course order."""
  stmt = select(UserStage, Stage).join(Stage, Stage.id == UserStage.stage_id).where(UserStage.user_course_id == enrollment_id).order_by(Stage.weight.asc()).execution_options(populate_existing=True)
  rows = (await session.execute(stmt)).all()
  return [(row[0], row[1]) for row in rows]


async def first_stage(session: AsyncSession, course_id: uuid.UUID) -> Stage | None:
  """Return the lowest-weight stage of a course."""
  stmt = select(Stage).where(Stage.course_id == course_id).order_by(Stage.weight.asc(), Stage.slug.asc()).limit(1)
  return (await session.execute(stmt)).scalar_one_or_none()


async def next_stage(session: AsyncSession, course_id: uuid.UUID, weight: int) -> Stage | None:
  """Return the first stage strictly heavier than ``weight``, across base and extension stages."""
  stmt = select(Stage).where(Stage.course_id == course_id, Stage.weight > weight).order_by(Stage.weight.asc(), Stage.slug.asc()).limit(1)
  return (await session.execute(stmt)).scalar_one_or_none()


async def stages_until(session: AsyncSession, course_slug: str, stage_slug: str) -> list[Stage]:
  """Return all stages of a course up to and including ``stage_slug``, in order.

  An unknown course or stage yields an empty list.
  """
  target = (
    select(Stage.weight)
    .join(Course, Course.id == Stage.course_id)
    .where(Course.slug == course_slug, Stage.slug == stage_slug)
    .scalar_subquery()
  )
  stmt = select(Stage).join(Course, Course.id == Stage.course_id).where(Course.slug == course_slug, Stage.weight <= target).order_by(Stage.weight.asc(), Stage.slug.asc())
  return list((await session.execute(stmt)).scalars().all())


async def insert_user_stage(session: AsyncSession, enrollment_id: uuid.UUID, stage_id: uuid.UUID, *, started_at: datetime.datetime | None = None) -> UserStage:
  """Insert an in-progress row; flushes so a uniqueness violation surfaces here."""
  user_stage = UserStage(
    id=uuid.uuid4(),
    user_course_id=enrollment_id,
    stage_id=stage_id,
    status=StageStatus.IN_PROGRESS.value,
    test=TestResult.FAILED.value,
    started_at=started_at or utc_now(),
  )
  session.add(user_stage)
  await session.flush()
  return user_stage


async def mark_user_stage_completed(session: AsyncSession, user_stage_id: uuid.UUID, *, completed_at: datetime.datetime) -> bool:
  """Move a row from in_progress to completed; False when another writer got there first."""
  stmt = (
    update(UserStage)
    .where(UserStage.id == user_stage_id, UserStage.status == StageStatus.IN_PROGRESS.value)
    .values(status=StageStatus.COMPLETED.value, test=TestResult.PASSED.value, completed_at=completed_at)
    .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount == 1


async def advance_enrollment(session: AsyncSession, enrollment_id: uuid.UUID, *, next_stage_id: uuid.UUID | None) -> None:
  """Count one more completed stage and move the pointer when a next stage exists."""
  values: dict[str, object] = {"completed_stage_count": UserCourse.completed_stage_count + 1}
  if next_stage_id is not None:
    values["current_stage_id"] = next_stage_id
  stmt = update(UserCourse).where(UserCourse.id == enrollment_id).values(**values).execution_options(synchronize_session=False)
  await session.execute(stmt)


async def mark_enrollment_activated(session: AsyncSession, enrollment_id: uuid.UUID, *, current_stage_id: uuid.UUID | None) -> None:
  stmt = update(UserCourse).where(UserCourse.id == enrollment_id).values(activated=True, current_stage_id=current_stage_id).execution_options(synchronize_session=False)
  await session.execute(stmt)


async def to_enrollment_record(session: AsyncSession, enrollment: UserCourse, course: Course) -> EnrollmentRecord:
  current_stage_slug = None
  if enrollment.current_stage_id is not None:
    stage = await get_stage_by_id(session, enrollment.current_stage_id)
    current_stage_slug = stage.slug if stage else None
  total = await count_course_stages(session, course.id)
  return EnrollmentRecord(
    id=str(enrollment.id),
    user_id=enrollment.user_id,
    course_slug=course.slug,
    current_stage_slug=current_stage_slug,
    completed_stage_count=enrollment.completed_stage_count,
    activated=enrollment.activated,
    finished=total > 0 and enrollment.completed_stage_count >= total,
    started_at=enrollment.started_at,
  )
