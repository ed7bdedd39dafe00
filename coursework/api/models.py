"""Request models for webhook and learner endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PushOwner(BaseModel):
  username: str | None = None
  login: str | None = None

  @property
  def name(self) -> str | None:
    return self.username or self.login


class PushRepository(BaseModel):
  name: str
  full_name: str | None = None
  owner: PushOwner = Field(default_factory=PushOwner)
  template: bool = False


class PushEvent(BaseModel):
  """Subset of the Gitea push payload the service reads."""

  ref: str
  repository: PushRepository


class TektonTaskStatus(BaseModel):
  status: str
  reason: str | None = None


class TektonTasks(BaseModel):
  test: TektonTaskStatus | None = None


class TektonNotification(BaseModel):
  """Completion notification posted by the test pipeline's final task."""

  name: str
  status: str
  repo: str
  course: str
  stage: str
  secret: str
  tasks: TektonTasks = Field(default_factory=TektonTasks)


class CompleteStageRequest(BaseModel):
  slug: str = Field(min_length=1)
