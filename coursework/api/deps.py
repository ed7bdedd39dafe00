"""Shared FastAPI dependencies for sessions and pipeline collaborators."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursework.core.database import get_db, get_session_factory
from coursework.jobs.watcher import PipelineWatchRegistry
from coursework.services.pipelines.interface import PipelineExecutor


async def get_db_session(session: AsyncSession = Depends(get_db)) -> AsyncSession:  # noqa: B008
  """Dependency to get the database session."""
  return session


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
  """Session factory for work that outlives the request, such as pipeline watches."""
  session_factory = get_session_factory()
  if session_factory is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database is not configured")
  return session_factory


def get_pipeline_executor(request: Request) -> PipelineExecutor:
  executor = getattr(request.app.state, "pipeline_executor", None)
  if executor is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline executor is not available")
  return executor


def get_watch_registry(request: Request) -> PipelineWatchRegistry:
  registry = getattr(request.app.state, "watch_registry", None)
  if registry is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline watch registry is not available")
  return registry
