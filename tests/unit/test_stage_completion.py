import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from coursework.core.errors import EnrollmentNotFoundError, StageAlreadyCompletedError, StageConflictError, StageNotFoundError, StageOutOfOrderError
from coursework.schema.sql import Stage, StageStatus, TestResult, UserStage
from coursework.services.stages import CompletionOutcome, apply_completion, complete_stage, complete_stage_detached, load_completion_context
from coursework.storage.progress_repo import stages_until, utc_now


@pytest.mark.anyio
async def test_completion_marks_stage_and_opens_next(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="bind-port")

  async with session_factory() as session:
    record = await complete_stage(session, "user-1", "redis", "bind-port")

  assert record.stage_slug == "bind-port"
  assert record.status == StageStatus.COMPLETED.value
  assert record.test == TestResult.PASSED.value
  assert record.completed_at is not None

  state = await read_progress(enrollment_id)
  assert state.current_stage == "ping"
  assert state.completed_stage_count == 1
  assert state.stages["bind-port"] == ("completed", "passed")
  assert state.stages["ping"] == ("in_progress", "failed")
  assert state.in_progress == ["ping"]


@pytest.mark.anyio
async def test_second_completion_is_rejected_and_counts_once(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="bind-port")

  async with session_factory() as session:
    await complete_stage(session, "user-1", "redis", "bind-port")
  async with session_factory() as session:
    with pytest.raises(StageAlreadyCompletedError):
      await complete_stage(session, "user-1", "redis", "bind-port")

  state = await read_progress(enrollment_id)
  assert state.completed_stage_count == 1
  assert state.current_stage == "ping"
  assert state.in_progress == ["ping"]


@pytest.mark.anyio
async def test_next_stage_follows_weight_across_base_and_extension(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="ping", completed=("bind-port",))

  async with session_factory() as session:
    await complete_stage(session, "user-1", "redis", "ping")
  assert (await read_progress(enrollment_id)).current_stage == "echo"

  async with session_factory() as session:
    await complete_stage(session, "user-1", "redis", "echo")
  state = await read_progress(enrollment_id)
  assert state.current_stage == "rdb-config"
  assert state.completed_stage_count == 3


@pytest.mark.anyio
async def test_last_stage_keeps_pointer_and_increments_count(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="rdb-read", completed=("bind-port", "ping", "echo", "rdb-config"))

  async with session_factory() as session:
    await complete_stage(session, "user-1", "redis", "rdb-read")

  state = await read_progress(enrollment_id)
  assert state.current_stage == "rdb-read"
  assert state.completed_stage_count == 5
  assert state.in_progress == []
  assert len(state.stages) == 5


@pytest.mark.anyio
async def test_out_of_order_completion_changes_nothing(session_factory, seeded_course, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="ping", completed=("bind-port",))
  # A stray in-progress row for a later stage must not be completable while ping is current.
  async with session_factory() as session:
    session.add(UserStage(id=uuid.uuid4(), user_course_id=enrollment_id, stage_id=seeded_course.stage_ids["rdb-config"], status="in_progress", test="failed", started_at=utc_now()))
    await session.commit()
  before = await read_progress(enrollment_id)

  async with session_factory() as session:
    with pytest.raises(StageOutOfOrderError):
      await complete_stage(session, "user-1", "redis", "rdb-config")

  assert await read_progress(enrollment_id) == before


@pytest.mark.anyio
async def test_unknown_enrollment_and_stage_are_not_found(session_factory, make_enrollment):
  await make_enrollment(current="bind-port")

  async with session_factory() as session:
    with pytest.raises(EnrollmentNotFoundError):
      await complete_stage(session, "someone-else", "redis", "bind-port")
    with pytest.raises(StageNotFoundError):
      await complete_stage(session, "user-1", "redis", "echo")


@pytest.mark.anyio
async def test_unique_violation_on_next_stage_rolls_back_everything(session_factory, seeded_course, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="bind-port")
  # Simulate a concurrent transaction that already created the next stage's row.
  async with session_factory() as session:
    session.add(UserStage(id=uuid.uuid4(), user_course_id=enrollment_id, stage_id=seeded_course.stage_ids["ping"], status="in_progress", test="failed", started_at=utc_now()))
    await session.commit()
  before = await read_progress(enrollment_id)

  async with session_factory() as session:
    with pytest.raises(StageConflictError):
      await complete_stage(session, "user-1", "redis", "bind-port")

  after = await read_progress(enrollment_id)
  assert after == before
  assert after.stages["bind-port"] == ("in_progress", "failed")


@pytest.mark.anyio
async def test_racing_completions_advance_exactly_once(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="bind-port")

  # The webhook path reads state, then the poll path completes and commits first.
  async with session_factory() as webhook_session:
    stale_context = await load_completion_context(webhook_session, "user-1", "redis", "bind-port")

    async with session_factory() as poll_session:
      await complete_stage(poll_session, "user-1", "redis", "bind-port")

    with pytest.raises(StageAlreadyCompletedError):
      await apply_completion(webhook_session, stale_context)

  state = await read_progress(enrollment_id)
  assert state.completed_stage_count == 1
  assert state.stages["bind-port"] == ("completed", "passed")
  assert state.stages["ping"] == ("in_progress", "failed")
  assert len(state.stages) == 2


@pytest.mark.anyio
async def test_detached_completion_reports_benign_outcomes(session_factory, make_enrollment, read_progress):
  enrollment_id = await make_enrollment(current="bind-port")

  assert await complete_stage_detached(session_factory, "user-1", "redis", "bind-port") is CompletionOutcome.COMPLETED
  assert await complete_stage_detached(session_factory, "user-1", "redis", "bind-port") is CompletionOutcome.ALREADY_HANDLED
  assert await complete_stage_detached(session_factory, "nobody", "redis", "bind-port") is CompletionOutcome.NOT_FOUND

  assert (await read_progress(enrollment_id)).completed_stage_count == 1


@pytest.mark.anyio
async def test_stages_until_returns_cumulative_plan(session_factory, seeded_course):
  async with session_factory() as session:
    assert [stage.slug for stage in await stages_until(session, "redis", "echo")] == ["bind-port", "ping", "echo"]
    assert [stage.slug for stage in await stages_until(session, "redis", "rdb-config")] == ["bind-port", "ping", "echo", "rdb-config"]
    assert await stages_until(session, "redis", "missing") == []


@pytest.mark.anyio
async def test_stage_weights_are_unique_within_a_course(session_factory, seeded_course):
  async with session_factory() as session:
    session.add(Stage(id=uuid.uuid4(), course_id=seeded_course.course_id, slug="echo-extra", name="Echo Extra", weight=2))
    with pytest.raises(IntegrityError):
      await session.commit()

  async with session_factory() as session:
    assert [stage.slug for stage in await stages_until(session, "redis", "echo")] == ["bind-port", "ping", "echo"]
