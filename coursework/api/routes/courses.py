from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import Response, StreamingResponse

from coursework.api.deps import get_db_session, get_sessionmaker
from coursework.api.msgspec_utils import encode_msgspec_response, encode_sse_event
from coursework.config import Settings, get_settings
from coursework.core.errors import NotFoundError
from coursework.core.security import get_current_user_id
from coursework.services.stages import get_enrollment_record, list_enrollment_records

router = APIRouter(prefix="/v1/user/courses", tags=["user"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_user_courses(user_id: Annotated[str, Depends(get_current_user_id)], session: Annotated[AsyncSession, Depends(get_db_session)]) -> Response:
  """Return every enrollment of the caller."""
  records = await list_enrollment_records(session, user_id)
  return encode_msgspec_response(records)


@router.get("/{slug}")
async def get_user_course(slug: str, user_id: Annotated[str, Depends(get_current_user_id)], session: Annotated[AsyncSession, Depends(get_db_session)]) -> Response:
  """Return the caller's enrollment in a course."""
  record = await get_enrollment_record(session, user_id, slug)
  return encode_msgspec_response(record)


@router.get("/{slug}/status")
async def stream_user_course_status(
  slug: str,
  request: Request,
  user_id: Annotated[str, Depends(get_current_user_id)],
  session: Annotated[AsyncSession, Depends(get_db_session)],
  session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
  settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
  """Stream enrollment snapshots until every stage is completed or the client leaves."""
  first = await get_enrollment_record(session, user_id, slug)
  await session.commit()
  interval = settings.status_stream_interval_seconds
  logger.info("Streaming status of course %s for %s", slug, user_id)

  async def _gen() -> AsyncIterator[bytes]:
    current = first
    while True:
      yield encode_sse_event(current)
      if current.finished:
        return
      await asyncio.sleep(interval)
      if await request.is_disconnected():
        return
      try:
        async with session_factory() as poll_session:
          current = await get_enrollment_record(poll_session, user_id, slug)
      except NotFoundError:
        logger.warning("Enrollment in course %s disappeared while streaming status for %s", slug, user_id)
        return

  return StreamingResponse(_gen(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})
