from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursework.api.deps import get_db_session, get_pipeline_executor, get_sessionmaker, get_watch_registry
from coursework.api.models import PushEvent, TektonNotification
from coursework.config import Settings, get_settings
from coursework.core.errors import EnrollmentNotFoundError, InvalidSignatureError, NotFoundError, StageNotFoundError
from coursework.core.security import verify_signature
from coursework.jobs.watcher import PipelineWatchRegistry
from coursework.services.pipelines.interface import PipelineExecutor
from coursework.services.push_events import handle_push_event
from coursework.services.stages import CompletionOutcome, complete_stage_detached
from coursework.storage.progress_repo import get_enrollment_by_id
from coursework.utils.ids import parse_enrollment_id

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

_TERMINAL_TEST_STATUSES = {"Succeeded", "Failed"}


@router.post("/gitea", status_code=status.HTTP_200_OK)
async def handle_gitea_push(
  event: PushEvent,
  session: Annotated[AsyncSession, Depends(get_db_session)],
  session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
  settings: Annotated[Settings, Depends(get_settings)],
  executor: Annotated[PipelineExecutor, Depends(get_pipeline_executor)],
  registry: Annotated[PipelineWatchRegistry, Depends(get_watch_registry)],
) -> dict[str, str]:
  """Activate or test a learner repository after a push.

  Recognized-but-ignored pushes and unknown repositories answer 200 so the git
  server does not retry them. Pipeline submission failures surface as 502.
  """
  repository = event.repository
  logger.info("Received push event for repository %s, ref %s", repository.full_name or repository.name, event.ref)
  try:
    outcome = await handle_push_event(
      session,
      session_factory,
      settings,
      executor,
      registry,
      ref=event.ref,
      repo_name=repository.name,
      owner=repository.owner.name,
      is_template=repository.template,
    )
  except NotFoundError as exc:
    logger.error("Push for repository %s could not be processed: %s", repository.name, exc)
    outcome = "not_found"
  return {"status": outcome}


@router.post("/tekton", status_code=status.HTTP_200_OK)
async def handle_tekton_notification(
  notification: TektonNotification,
  session: Annotated[AsyncSession, Depends(get_db_session)],
  session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
  settings: Annotated[Settings, Depends(get_settings)],
) -> dict[str, str]:
  """Complete a stage when its pipeline reports a passing test run."""
  if not verify_signature(notification.repo, notification.course, notification.stage, settings.auth_secret, notification.secret):
    logger.warning("Rejected pipeline notification %s with invalid signature for repo=%s course=%s stage=%s", notification.name, notification.repo, notification.course, notification.stage)
    raise InvalidSignatureError()

  test = notification.tasks.test
  test_status = test.status if test else None
  if notification.status != "Succeeded" or test_status not in _TERMINAL_TEST_STATUSES:
    logger.info("Ignoring pipeline notification %s: status=%s test=%s", notification.name, notification.status, test_status)
    return {"status": "ignored"}

  if test_status == "Failed":
    logger.info("PipelineRun %s tests failed for repo=%s stage=%s: %s", notification.name, notification.repo, notification.stage, test.reason if test else None)
    return {"status": "failed"}

  enrollment_id = parse_enrollment_id(notification.repo)
  row = await get_enrollment_by_id(session, enrollment_id) if enrollment_id else None
  if row is None or row[1].slug != notification.course:
    raise EnrollmentNotFoundError()
  enrollment, course = row
  # Release the read transaction before the completion opens its own.
  await session.commit()

  outcome = await complete_stage_detached(session_factory, enrollment.user_id, course.slug, notification.stage)
  if outcome is CompletionOutcome.NOT_FOUND:
    raise StageNotFoundError()
  if outcome is CompletionOutcome.ALREADY_HANDLED:
    return {"status": "ignored"}
  return {"status": "completed"}
