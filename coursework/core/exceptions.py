"""Exception handlers rendering ``{"detail", "requestId"}`` error bodies."""

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coursework.config import get_settings
from coursework.core.errors import InvalidSignatureError, NotFoundError, OrderingViolationError, PipelineError, ProgressError, StageConflictError

logger = logging.getLogger("uvicorn.error")


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "ctx", "url"}}
    scrubbed["loc"] = [str(part) for part in scrubbed.get("loc", ())]
    sanitized.append(scrubbed)
  return sanitized


def progress_status_code(exc: ProgressError) -> int:
  """Map a progression error onto the HTTP status learners and webhooks see."""
  if isinstance(exc, NotFoundError):
    return status.HTTP_404_NOT_FOUND
  if isinstance(exc, OrderingViolationError):
    return status.HTTP_400_BAD_REQUEST
  if isinstance(exc, StageConflictError):
    return status.HTTP_409_CONFLICT
  if isinstance(exc, InvalidSignatureError):
    return status.HTTP_401_UNAUTHORIZED
  return status.HTTP_400_BAD_REQUEST


async def progress_exception_handler(request: Request, exc: ProgressError) -> JSONResponse:
  status_code = progress_status_code(exc)
  if get_settings().log_http_4xx:
    logger.warning("Progress error request_id=%s path=%s status_code=%s error=%s", _request_id(request), request.url.path, status_code, exc)
  return JSONResponse(status_code=status_code, content=_error_payload(str(exc), request_id=_request_id(request)))


async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
  """Report execution platform failures without echoing platform responses."""
  request_id = _request_id(request)
  logger.error("Pipeline failure request_id=%s path=%s error_type=%s error=%s", request_id, request.url.path, type(exc).__name__, exc)
  return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=_error_payload("Pipeline submission failed", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions while keeping 5xx diagnostics out of responses."""
  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  request_id = _request_id(request)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))
