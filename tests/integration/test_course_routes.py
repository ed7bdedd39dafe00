import json
from dataclasses import replace

import pytest

from coursework.config import get_settings
from coursework.main import app
from coursework.services import stages as stage_service

HEADERS = {"X-User-Id": "user-1"}
ALL_STAGES = ("bind-port", "ping", "echo", "rdb-config", "rdb-read")


def _events(text: str) -> list[dict]:
  return [json.loads(chunk.removeprefix("data: ")) for chunk in text.split("\n\n") if chunk]


@pytest.fixture
def fast_stream():
  app.dependency_overrides[get_settings] = lambda: replace(get_settings(), status_stream_interval_seconds=0.01)


@pytest.mark.anyio
async def test_list_courses_returns_only_callers_enrollments(api_client, make_enrollment):
  own_id = await make_enrollment(current="ping", completed=("bind-port",))
  await make_enrollment(user_id="user-2", current="bind-port")

  response = await api_client.get("/v1/user/courses", headers=HEADERS)

  assert response.status_code == 200
  body = response.json()
  assert [item["id"] for item in body] == [str(own_id)]
  assert body[0]["current_stage_slug"] == "ping"
  assert body[0]["finished"] is False


@pytest.mark.anyio
async def test_list_courses_is_empty_without_enrollments(api_client, seeded_course):
  response = await api_client.get("/v1/user/courses", headers={"X-User-Id": "nobody"})

  assert response.status_code == 200
  assert response.json() == []


@pytest.mark.anyio
async def test_list_courses_requires_identity(api_client):
  response = await api_client.get("/v1/user/courses")

  assert response.status_code == 401


@pytest.mark.anyio
async def test_course_status_stream_ends_when_course_is_finished(api_client, make_enrollment):
  await make_enrollment(current="rdb-read", completed=ALL_STAGES)

  response = await api_client.get("/v1/user/courses/redis/status", headers=HEADERS)

  assert response.status_code == 200
  assert response.headers["content-type"].startswith("text/event-stream")
  events = _events(response.text)
  assert len(events) == 1
  assert events[0]["completed_stage_count"] == 5
  assert events[0]["finished"] is True


@pytest.mark.anyio
async def test_course_status_stream_reports_advancement(monkeypatch, api_client, make_enrollment, fast_stream):
  await make_enrollment(current="rdb-read", completed=ALL_STAGES[:-1])
  real_lookup = stage_service.get_enrollment_record
  calls = 0

  async def _lookup_after_completion(session, user_id, course_slug):
    nonlocal calls
    calls += 1
    if calls == 2:
      await stage_service.complete_stage(session, user_id, course_slug, "rdb-read")
    return await real_lookup(session, user_id, course_slug)

  monkeypatch.setattr("coursework.api.routes.courses.get_enrollment_record", _lookup_after_completion)

  response = await api_client.get("/v1/user/courses/redis/status", headers=HEADERS)

  events = _events(response.text)
  assert [(event["completed_stage_count"], event["finished"]) for event in events] == [(4, False), (5, True)]


@pytest.mark.anyio
async def test_course_status_stream_for_unknown_course_is_not_found(api_client, make_enrollment):
  await make_enrollment(current="bind-port")

  response = await api_client.get("/v1/user/courses/kafka/status", headers=HEADERS)

  assert response.status_code == 404
