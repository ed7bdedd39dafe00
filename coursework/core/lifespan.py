import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from coursework.config import get_settings
from coursework.core.database import dispose_engine
from coursework.core.logging import initialize_logging
from coursework.jobs.watcher import PipelineWatchRegistry
from coursework.services.pipelines.factory import get_pipeline_executor


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and pipeline collaborators; cancel watches and close pools on shutdown."""
  settings = get_settings()
  logger = logging.getLogger("coursework.core.lifespan")
  initialize_logging(settings)

  if not settings.auth_secret:
    logger.warning("COURSEWORK_AUTH_SECRET is not set; pipeline submission and notifications will fail.")

  executor = get_pipeline_executor(settings)
  registry = PipelineWatchRegistry()
  app.state.pipeline_executor = executor
  app.state.watch_registry = registry
  logger.info("Startup complete - provider=%s namespace=%s", settings.pipeline_provider, settings.namespace)

  try:
    yield
  finally:
    if registry.active:
      logger.info("Cancelling %d pipeline watches", registry.active)
    await registry.cancel_all()
    await executor.aclose()
    await dispose_engine()
    logger.info("Shutdown complete")
