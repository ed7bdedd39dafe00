from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from coursework.api.routes import courses, stages, webhooks
from coursework.config import get_settings
from coursework.core.errors import PipelineError, ProgressError
from coursework.core.exceptions import global_exception_handler, http_exception_handler, pipeline_exception_handler, progress_exception_handler, request_validation_exception_handler
from coursework.core.lifespan import lifespan
from coursework.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="coursework-engine", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization", "x-user-id"], expose_headers=["content-length", "x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(ProgressError, progress_exception_handler)
app.add_exception_handler(PipelineError, pipeline_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(webhooks.router)
app.include_router(courses.router)
app.include_router(stages.router)
