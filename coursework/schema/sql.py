from __future__ import annotations

import datetime
import uuid
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from coursework.core.database import Base


class StageStatus(str, Enum):
  IN_PROGRESS = "in_progress"
  COMPLETED = "completed"


class TestResult(str, Enum):
  __test__ = False

  FAILED = "failed"
  PASSED = "passed"


class Course(Base):
  __tablename__ = "courses"

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  slug: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  stage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Extension(Base):
  __tablename__ = "extensions"
  __table_args__ = (UniqueConstraint("course_id", "slug", name="ux_extensions_course_slug"),)

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  course_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
  slug: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Stage(Base):
  __tablename__ = "stages"
  __table_args__ = (
    UniqueConstraint("course_id", "slug", name="ux_stages_course_slug"),
    UniqueConstraint("course_id", "weight", name="ux_stages_course_weight"),
  )

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  course_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
  extension_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("extensions.id", ondelete="CASCADE"), nullable=True, index=True)
  slug: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  # Extension stages carry the extension's weight bucket; weights are unique so one total order covers the whole course.
  weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserCourse(Base):
  """A learner's enrollment in one course."""

  __tablename__ = "user_courses"
  __table_args__ = (UniqueConstraint("user_id", "course_id", name="unique_user_course"),)

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  course_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
  current_stage_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
  completed_stage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  activated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserStage(Base):
  """A learner's progress on one stage, scoped to an enrollment."""

  __tablename__ = "user_stages"
  __table_args__ = (
    UniqueConstraint("user_course_id", "stage_id", name="unique_user_stage"),
    CheckConstraint("status IN ('in_progress', 'completed')", name="ck_user_stages_status"),
  )

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  user_course_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("user_courses.id", ondelete="CASCADE"), nullable=False, index=True)
  stage_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default=StageStatus.IN_PROGRESS.value, index=True)
  test: Mapped[str] = mapped_column(String, nullable=False, default=TestResult.FAILED.value)
  started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
