"""Test configuration for importing the application package."""

from __future__ import annotations

import os
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Settings are cached per process, so required values must exist before any import.
os.environ.setdefault("COURSEWORK_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("COURSEWORK_AUTH_SECRET", "test-secret")
os.environ.setdefault("COURSEWORK_WATCH_INTERVAL_SECONDS", "0.01")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from coursework.core.database import Base  # noqa: E402
from coursework.jobs.render import PipelineRunSpec  # noqa: E402
from coursework.jobs.watcher import PipelineWatchRegistry  # noqa: E402
from coursework.schema.sql import Course, Extension, Stage, StageStatus, TestResult, UserCourse, UserStage  # noqa: E402
from coursework.storage.progress_repo import utc_now  # noqa: E402

BASE_STAGES = [("bind-port", 0), ("ping", 1), ("echo", 2)]
EXTENSION_STAGES = [("rdb-config", 1000), ("rdb-read", 1001)]
USER_ID = "user-1"


@pytest.fixture
def anyio_backend():
  return "asyncio"


class FakePipelineExecutor:
  """In-memory executor recording submissions and replaying scripted statuses."""

  def __init__(self, statuses: list[object] | None = None) -> None:
    self.submitted: list[PipelineRunSpec] = []
    self.statuses: list[object] = list(statuses or ["succeeded"])
    self.polls = 0
    self.submit_error: Exception | None = None
    self.closed = False

  async def submit(self, spec: PipelineRunSpec) -> str:
    if self.submit_error is not None:
      raise self.submit_error
    self.submitted.append(spec)
    return spec.name

  async def get_status(self, name: str):
    self.polls += 1
    item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
    if isinstance(item, Exception):
      raise item
    return item

  async def aclose(self) -> None:
    self.closed = True


class RecordingWatchRegistry(PipelineWatchRegistry):
  """Registry that keeps every spawned task so tests can await them."""

  def __init__(self) -> None:
    super().__init__()
    self.spawned = []

  def spawn(self, name, watch):
    task = super().spawn(name, watch)
    self.spawned.append(task)
    return task


@dataclass
class SeededCourse:
  course_id: uuid.UUID
  slug: str
  stage_ids: dict[str, uuid.UUID] = field(default_factory=dict)


@pytest.fixture
def fake_executor() -> FakePipelineExecutor:
  return FakePipelineExecutor()


@pytest.fixture
def watch_registry() -> RecordingWatchRegistry:
  return RecordingWatchRegistry()


@pytest.fixture
async def db_engine(tmp_path):
  engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  yield engine
  await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
  return async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def seeded_course(session_factory) -> SeededCourse:
  """A course with three base stages and a two-stage extension weighted after them."""
  course = Course(id=uuid.uuid4(), slug="redis", name="Build your own Redis", stage_count=len(BASE_STAGES))
  extension = Extension(id=uuid.uuid4(), course_id=course.id, slug="persistence", name="RDB Persistence", weight=1000)
  seeded = SeededCourse(course_id=course.id, slug=course.slug)
  async with session_factory() as session:
    session.add(course)
    session.add(extension)
    await session.flush()
    for slug, weight in BASE_STAGES:
      stage = Stage(id=uuid.uuid4(), course_id=course.id, slug=slug, name=slug.replace("-", " ").title(), weight=weight)
      session.add(stage)
      seeded.stage_ids[slug] = stage.id
    for slug, weight in EXTENSION_STAGES:
      stage = Stage(id=uuid.uuid4(), course_id=course.id, extension_id=extension.id, slug=slug, name=slug.replace("-", " ").title(), weight=weight)
      session.add(stage)
      seeded.stage_ids[slug] = stage.id
    await session.commit()
  return seeded


@pytest.fixture
def make_enrollment(session_factory, seeded_course):
  """Create an enrollment, optionally positioned on a stage with earlier stages completed."""

  async def _make(*, user_id: str = USER_ID, current: str | None = None, completed: tuple[str, ...] = ()) -> uuid.UUID:
    enrollment = UserCourse(
      id=uuid.uuid4(),
      user_id=user_id,
      course_id=seeded_course.course_id,
      current_stage_id=seeded_course.stage_ids[current] if current else None,
      completed_stage_count=len(completed),
      activated=current is not None,
      started_at=utc_now(),
    )
    async with session_factory() as session:
      session.add(enrollment)
      await session.flush()
      for slug in completed:
        session.add(
          UserStage(
            id=uuid.uuid4(),
            user_course_id=enrollment.id,
            stage_id=seeded_course.stage_ids[slug],
            status=StageStatus.COMPLETED.value,
            test=TestResult.PASSED.value,
            started_at=utc_now(),
            completed_at=utc_now(),
          )
        )
      if current is not None and current not in completed:
        session.add(UserStage(id=uuid.uuid4(), user_course_id=enrollment.id, stage_id=seeded_course.stage_ids[current], status=StageStatus.IN_PROGRESS.value, test=TestResult.FAILED.value, started_at=utc_now()))
      await session.commit()
    return enrollment.id

  return _make


@dataclass
class ProgressSnapshot:
  current_stage: str | None
  completed_stage_count: int
  activated: bool
  stages: dict[str, tuple[str, str]]

  @property
  def in_progress(self) -> list[str]:
    return [slug for slug, (status, _) in self.stages.items() if status == StageStatus.IN_PROGRESS.value]


@pytest.fixture
def read_progress(session_factory):
  """Read an enrollment's state through a fresh session."""

  async def _read(enrollment_id: uuid.UUID) -> ProgressSnapshot:
    async with session_factory() as session:
      enrollment = await session.get(UserCourse, enrollment_id)
      stages = {stage.id: stage.slug for stage in (await session.execute(Stage.__table__.select())).all()}
      rows = (await session.execute(UserStage.__table__.select().where(UserStage.__table__.c.user_course_id == enrollment_id))).all()
      return ProgressSnapshot(
        current_stage=stages.get(enrollment.current_stage_id) if enrollment.current_stage_id else None,
        completed_stage_count=enrollment.completed_stage_count,
        activated=enrollment.activated,
        stages={stages[row.stage_id]: (row.status, row.test) for row in rows},
      )

  return _read


@pytest.fixture
async def api_client(session_factory, fake_executor, watch_registry):
  """HTTP client against the app with storage and pipeline collaborators swapped for test doubles."""
  from httpx import ASGITransport, AsyncClient

  from coursework.api.deps import get_pipeline_executor, get_sessionmaker, get_watch_registry
  from coursework.core.database import get_db
  from coursework.main import app

  async def _get_db():
    async with session_factory() as session:
      yield session

  app.dependency_overrides[get_db] = _get_db
  app.dependency_overrides[get_sessionmaker] = lambda: session_factory
  app.dependency_overrides[get_pipeline_executor] = lambda: fake_executor
  app.dependency_overrides[get_watch_registry] = lambda: watch_registry
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
  await watch_registry.cancel_all()
