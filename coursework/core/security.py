"""Pipeline callback signing and caller identity resolution."""

from __future__ import annotations

import hashlib
import hmac
from typing import Annotated

from fastapi import Header, HTTPException, status

from coursework.core.errors import SigningKeyMissingError


def _canonical_payload(repo: str, course: str, stage: str) -> str:
  # Field order is part of the signature contract shared with the pipeline.
  return f"{repo}{course}{stage}"


def sign_payload(repo: str, course: str, stage: str, secret: str | None) -> str:
  """Return the hex HMAC-SHA256 signature binding a pipeline run to (repo, course, stage)."""
  if not secret:
    raise SigningKeyMissingError("COURSEWORK_AUTH_SECRET is not configured.")
  payload = _canonical_payload(repo, course, stage)
  return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(repo: str, course: str, stage: str, secret: str | None, signature: str) -> bool:
  """Check a received signature against the expected one in constant time."""
  expected = sign_payload(repo, course, stage, secret)
  return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


async def get_current_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
  """Resolve the learner id asserted by the upstream authentication gateway."""
  # Tokens are verified before requests reach this service; only the resolved subject is forwarded.
  user_id = (x_user_id or "").strip()
  if not user_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")
  return user_id
