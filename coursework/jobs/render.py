"""Build Tekton PipelineRun documents for a learner's test run.

Rendering is pure: the caller supplies the ordered stage slugs, settings and an
optional run name, and gets back a value object that serializes to the manifest
the Kubernetes API expects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from coursework.config import Settings
from coursework.core.security import sign_payload
from coursework.utils.ids import generate_run_name

LABEL_PREFIX = "coursework.dev"
TEKTON_API_VERSION = "tekton.dev/v1"
FS_GROUP = 65532
WORKSPACE_NAME = "shared-workspace"
DOCKER_CREDENTIALS_SECRET = "docker-credentials"


@dataclass(frozen=True)
class PipelineRunSpec:
  """Typed description of one PipelineRun."""

  name: str
  namespace: str
  pipeline_name: str
  repo: str
  course: str
  stage: str
  repo_url: str
  course_image: str
  tester_image: str
  test_image: str
  command: str
  test_cases_json: str
  webhook_url: str
  signature: str
  workspace_storage: str = "5Gi"
  labels: dict[str, str] = field(default_factory=dict)

  def params(self) -> list[dict[str, str]]:
    """Return the pipeline params in the order the pipeline declares them."""
    values = [
      ("REPO_URL", self.repo_url),
      ("COURSE_IMAGE", self.course_image),
      ("TESTER_IMAGE", self.tester_image),
      ("TEST_IMAGE", self.test_image),
      ("COMMAND", self.command),
      ("TEST_CASES_JSON", self.test_cases_json),
      ("WEBHOOK_URL", self.webhook_url),
      ("REPO", self.repo),
      ("COURSE", self.course),
      ("STAGE", self.stage),
      ("SECRET", self.signature),
    ]
    return [{"name": key, "value": value} for key, value in values]

  def to_manifest(self) -> dict[str, Any]:
    return {
      "apiVersion": TEKTON_API_VERSION,
      "kind": "PipelineRun",
      "metadata": {"name": self.name, "namespace": self.namespace, "labels": dict(self.labels)},
      "spec": {
        "pipelineRef": {"name": self.pipeline_name},
        "podTemplate": {"securityContext": {"fsGroup": FS_GROUP}},
        "params": self.params(),
        "workspaces": [
          {
            "name": WORKSPACE_NAME,
            "volumeClaimTemplate": {"spec": {"accessModes": ["ReadWriteOnce"], "resources": {"requests": {"storage": self.workspace_storage}}}},
          },
          {"name": DOCKER_CREDENTIALS_SECRET, "secret": {"secretName": DOCKER_CREDENTIALS_SECRET}},
        ],
      },
    }


def build_test_cases(slugs: list[str]) -> str:
  """Serialize the cumulative test plan; numbering is 1-based in course order."""
  cases = [{"slug": slug, "log_prefix": f"test-{index}", "title": f"Stage #{index}: {slug}"} for index, slug in enumerate(slugs, start=1)]
  return json.dumps(cases)


def registry_host(endpoint: str) -> str:
  """Return the host[:port] of a registry endpoint, accepting bare hosts too."""
  parts = urlsplit(endpoint if "://" in endpoint else f"//{endpoint}")
  if not parts.netloc:
    raise ValueError(f"Invalid registry endpoint: {endpoint!r}")
  return parts.netloc


def build_labels(repo: str, course: str, stage: str) -> dict[str, str]:
  return {f"{LABEL_PREFIX}/repo": repo, f"{LABEL_PREFIX}/course": course, f"{LABEL_PREFIX}/stage": stage}


def render_pipeline_run(repo: str, course: str, stage: str, stage_slugs: list[str], settings: Settings, name: str | None = None) -> PipelineRunSpec:
  """Render the PipelineRun that tests ``repo`` against every stage up to ``stage``."""
  if not stage_slugs or stage_slugs[-1] != stage:
    raise ValueError(f"Stage list must end with the stage under test ({stage}).")

  org = settings.namespace
  registry = registry_host(settings.docker_registry_endpoint)
  return PipelineRunSpec(
    name=name or generate_run_name(),
    namespace=settings.namespace,
    pipeline_name=settings.pipeline_name,
    repo=repo,
    course=course,
    stage=stage,
    repo_url=f"{settings.git_server_endpoint}/{org}/{repo}.git",
    course_image=f"{registry}/{org}/{repo}:latest",
    tester_image=f"{settings.tester_image_prefix}/{course}-tester",
    test_image=f"{registry}/{org}/{repo}-test:latest",
    command=f"/app/{course}-tester",
    test_cases_json=build_test_cases(stage_slugs),
    webhook_url=f"{settings.webhook_endpoint}/v1/webhooks/tekton",
    signature=sign_payload(repo, course, stage, settings.auth_secret),
    workspace_storage=settings.workspace_storage,
    labels=build_labels(repo, course, stage),
  )
