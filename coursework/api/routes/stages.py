from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response, StreamingResponse

from coursework.api.deps import get_db_session, get_sessionmaker
from coursework.api.models import CompleteStageRequest
from coursework.api.msgspec_utils import encode_msgspec_response, encode_sse_event
from coursework.config import Settings, get_settings
from coursework.core.errors import NotFoundError
from coursework.core.security import get_current_user_id
from coursework.schema.sql import StageStatus
from coursework.services import stages as stage_service

router = APIRouter(prefix="/v1/user/courses", tags=["user"])
logger = logging.getLogger(__name__)


@router.get("/{slug}/stages")
async def list_user_stages(slug: str, user_id: Annotated[str, Depends(get_current_user_id)], session: Annotated[AsyncSession, Depends(get_db_session)]) -> Response:
  records = await stage_service.list_user_stages(session, user_id, slug)
  return encode_msgspec_response(records)


@router.post("/{slug}/stages")
async def complete_user_stage(
  slug: str,
  payload: CompleteStageRequest,
  user_id: Annotated[str, Depends(get_current_user_id)],
  session: Annotated[AsyncSession, Depends(get_db_session)],
) -> Response:
  """Complete the caller's current stage; ordering violations answer 400 and conflicts 409."""
  record = await stage_service.complete_stage(session, user_id, slug, payload.slug)
  return encode_msgspec_response(record)


@router.get("/{slug}/stages/{stage_slug}")
async def get_user_stage(slug: str, stage_slug: str, user_id: Annotated[str, Depends(get_current_user_id)], session: Annotated[AsyncSession, Depends(get_db_session)]) -> Response:
  record = await stage_service.get_user_stage(session, user_id, slug, stage_slug)
  return encode_msgspec_response(record)


@router.get("/{slug}/stages/{stage_slug}/status")
async def stream_user_stage_status(
  slug: str,
  stage_slug: str,
  request: Request,
  user_id: Annotated[str, Depends(get_current_user_id)],
  session: Annotated[AsyncSession, Depends(get_db_session)],
  session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
  settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
  """Stream ``{status, test}`` events until the stage completes or the client leaves."""
  # Resolve before streaming so an unknown stage is a plain 404.
  first = await stage_service.get_user_stage_status(session, user_id, slug, stage_slug)
  await session.commit()
  interval = settings.status_stream_interval_seconds

  async def _gen() -> AsyncIterator[bytes]:
    current = first
    while True:
      yield encode_sse_event(current)
      if current.status == StageStatus.COMPLETED.value:
        return
      await asyncio.sleep(interval)
      if await request.is_disconnected():
        return
      try:
        # A fresh session per poll so each read sees the latest committed state.
        async with session_factory() as poll_session:
          current = await stage_service.get_user_stage_status(poll_session, user_id, slug, stage_slug)
      except NotFoundError:
        logger.warning("Stage %s of course %s disappeared while streaming status for %s", stage_slug, slug, user_id)
        return

  return StreamingResponse(_gen(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})
