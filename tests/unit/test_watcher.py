import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import FakePipelineExecutor

from coursework.core.errors import PipelineStatusError, PipelineUnavailableError
from coursework.jobs.watcher import PipelineWatchRegistry, watch_pipeline_run


@pytest.mark.anyio
async def test_success_invokes_callback_exactly_once():
  executor = FakePipelineExecutor(["running", "running", "succeeded"])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0)

  assert outcome == "succeeded"
  on_success.assert_awaited_once()
  assert executor.polls == 3


@pytest.mark.anyio
async def test_failed_run_stops_without_callback():
  executor = FakePipelineExecutor(["running", "failed"])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0)

  assert outcome == "failed"
  on_success.assert_not_awaited()


@pytest.mark.anyio
async def test_transient_errors_do_not_end_the_watch():
  executor = FakePipelineExecutor([PipelineUnavailableError("down"), PipelineUnavailableError("down"), "running", "succeeded"])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0, max_consecutive_errors=3)

  assert outcome == "succeeded"
  on_success.assert_awaited_once()


@pytest.mark.anyio
async def test_consecutive_transient_errors_end_the_watch():
  executor = FakePipelineExecutor([PipelineUnavailableError("down")])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0, max_consecutive_errors=3)

  assert outcome == "error"
  assert executor.polls == 3
  on_success.assert_not_awaited()


@pytest.mark.anyio
async def test_definitive_status_error_ends_the_watch():
  executor = FakePipelineExecutor([PipelineStatusError("gone"), "succeeded"])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0)

  assert outcome == "error"
  assert executor.polls == 1
  on_success.assert_not_awaited()


@pytest.mark.anyio
async def test_max_duration_abandons_a_stuck_run():
  executor = FakePipelineExecutor(["running"])
  on_success = AsyncMock()

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0.01, max_duration=0.05)

  assert outcome == "abandoned"
  on_success.assert_not_awaited()


@pytest.mark.anyio
async def test_callback_failure_is_logged_not_raised(caplog):
  executor = FakePipelineExecutor(["succeeded"])
  on_success = AsyncMock(side_effect=RuntimeError("db down"))

  outcome = await watch_pipeline_run(executor, "run-1", on_success, interval=0)

  assert outcome == "succeeded"
  assert "Completion callback for PipelineRun run-1 failed" in caplog.text


@pytest.mark.anyio
async def test_registry_tracks_and_cancels_watches():
  registry = PipelineWatchRegistry()
  executor = FakePipelineExecutor(["running"])
  task = registry.spawn("run-1", watch_pipeline_run(executor, "run-1", AsyncMock(), interval=0.01))
  await asyncio.sleep(0.02)
  assert registry.active == 1

  await registry.cancel_all()

  assert task.cancelled()
  assert registry.active == 0


@pytest.mark.anyio
async def test_registry_discards_finished_watches():
  registry = PipelineWatchRegistry()
  task = registry.spawn("run-1", watch_pipeline_run(FakePipelineExecutor(["failed"]), "run-1", AsyncMock(), interval=0))

  assert await task == "failed"
  await asyncio.sleep(0)
  assert registry.active == 0
