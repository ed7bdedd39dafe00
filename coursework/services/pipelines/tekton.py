from __future__ import annotations

import logging
import ssl
from pathlib import Path
from typing import Any

import httpx

from coursework.config import Settings
from coursework.core.errors import PipelineStatusError, PipelineSubmissionError, PipelineUnavailableError
from coursework.jobs.models import PipelineRunStatus
from coursework.jobs.render import PipelineRunSpec
from coursework.services.pipelines.interface import PipelineExecutor

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def status_from_manifest(manifest: dict[str, Any]) -> PipelineRunStatus:
  """Map a PipelineRun's ``Succeeded`` condition onto a run status."""
  conditions = (manifest.get("status") or {}).get("conditions") or []
  for condition in conditions:
    if condition.get("type") != "Succeeded":
      continue
    value = condition.get("status")
    if value == "True":
      return "succeeded"
    if value == "False":
      return "failed"
    return "running"
  return "running"


class TektonPipelineExecutor(PipelineExecutor):
  """Creates and reads Tekton PipelineRuns through the Kubernetes API."""

  def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self.settings = settings
    self._token_path = Path(settings.kube_token_path) if settings.kube_token_path else None
    verify: ssl.SSLContext | bool = ssl.create_default_context(cafile=settings.kube_ca_path) if settings.kube_ca_path else True
    # Never pick up proxy variables for in-cluster API calls.
    self._client = httpx.AsyncClient(base_url=settings.kube_api_url, timeout=settings.kube_timeout_seconds, verify=verify, transport=transport, trust_env=False)

  def _collection_path(self) -> str:
    return f"/apis/tekton.dev/v1/namespaces/{self.settings.namespace}/pipelineruns"

  def _headers(self) -> dict[str, str]:
    headers = {"accept": "application/json"}
    # Projected service account tokens rotate, so read the file per request.
    if self._token_path is not None:
      token = self._token_path.read_text(encoding="utf-8").strip()
      headers["authorization"] = f"Bearer {token}"
    return headers

  async def submit(self, spec: PipelineRunSpec) -> str:
    """Create the PipelineRun; any failure is reported as a submission error."""
    try:
      response = await self._client.post(self._collection_path(), json=spec.to_manifest(), headers=self._headers())
      response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.error("PipelineRun %s submission returned %s: %s", spec.name, exc.response.status_code, exc.response.text)
      raise PipelineSubmissionError(f"PipelineRun submission rejected with status {exc.response.status_code}") from exc
    except (httpx.RequestError, OSError) as exc:
      logger.error("PipelineRun %s submission failed: %s", spec.name, exc)
      raise PipelineSubmissionError("Execution platform unreachable") from exc

    logger.info("Submitted PipelineRun %s for repo=%s course=%s stage=%s", spec.name, spec.repo, spec.course, spec.stage)
    return spec.name

  async def get_status(self, name: str) -> PipelineRunStatus:
    try:
      response = await self._client.get(f"{self._collection_path()}/{name}", headers=self._headers())
    except (httpx.RequestError, OSError) as exc:
      raise PipelineUnavailableError(f"Status read for {name} failed: {exc}") from exc

    if response.status_code in _RETRYABLE_STATUS_CODES:
      raise PipelineUnavailableError(f"Status read for {name} returned {response.status_code}")
    if response.is_error:
      raise PipelineStatusError(f"Status read for {name} returned {response.status_code}")

    return status_from_manifest(response.json())

  async def aclose(self) -> None:
    await self._client.aclose()
