"""Background observation of pipeline runs.

A watch polls one run until it reaches a terminal status and invokes the
completion callback at most once, only when the run succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from coursework.core.errors import PipelineStatusError, PipelineUnavailableError
from coursework.jobs.models import WatchOutcome
from coursework.services.pipelines.interface import PipelineExecutor

logger = logging.getLogger(__name__)

OnSuccess = Callable[[], Awaitable[object]]


async def watch_pipeline_run(
  executor: PipelineExecutor,
  name: str,
  on_success: OnSuccess,
  *,
  interval: float,
  max_duration: float | None = None,
  max_consecutive_errors: int = 5,
) -> WatchOutcome:
  """Poll ``name`` until it finishes and return how the watch ended.

  Transient platform errors are tolerated until ``max_consecutive_errors`` polls
  in a row fail. A definitive status error ends the watch immediately. When
  ``max_duration`` elapses first the watch is abandoned and the stage stays in
  progress for the next push to retry.
  """
  loop = asyncio.get_running_loop()
  deadline = loop.time() + max_duration if max_duration is not None else None
  consecutive_errors = 0

  while True:
    try:
      status = await executor.get_status(name)
    except PipelineUnavailableError as exc:
      consecutive_errors += 1
      logger.warning("PipelineRun %s poll failed (%d/%d): %s", name, consecutive_errors, max_consecutive_errors, exc)
      if consecutive_errors >= max_consecutive_errors:
        logger.error("PipelineRun %s watch stopped after %d consecutive poll failures", name, consecutive_errors)
        return "error"
    except PipelineStatusError as exc:
      logger.error("PipelineRun %s watch stopped: %s", name, exc)
      return "error"
    else:
      consecutive_errors = 0
      if status == "succeeded":
        logger.info("PipelineRun %s succeeded", name)
        try:
          await on_success()
        except Exception:
          logger.exception("Completion callback for PipelineRun %s failed", name)
        return "succeeded"
      if status == "failed":
        logger.info("PipelineRun %s failed; stage stays in progress", name)
        return "failed"

    if deadline is not None and loop.time() >= deadline:
      logger.warning("PipelineRun %s watch abandoned after %.0fs", name, max_duration)
      return "abandoned"

    await asyncio.sleep(interval)


class PipelineWatchRegistry:
  """Owns detached watch tasks so they are neither garbage collected nor leaked on shutdown."""

  def __init__(self) -> None:
    self._tasks: set[asyncio.Task[WatchOutcome]] = set()

  def spawn(self, name: str, watch: Awaitable[WatchOutcome]) -> asyncio.Task[WatchOutcome]:
    task = asyncio.ensure_future(watch)
    task.set_name(f"watch:{name}")
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    return task

  @property
  def active(self) -> int:
    return len(self._tasks)

  async def cancel_all(self) -> None:
    """Cancel every running watch and wait for them to unwind."""
    tasks = list(self._tasks)
    for task in tasks:
      task.cancel()
    if tasks:
      await asyncio.gather(*tasks, return_exceptions=True)
    self._tasks.clear()
