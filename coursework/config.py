"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from coursework.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_IN_CLUSTER_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
_IN_CLUSTER_CA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the coursework service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  auth_secret: str | None
  git_server_endpoint: str
  namespace: str
  docker_registry_endpoint: str
  webhook_endpoint: str
  template_owner: str
  main_ref: str
  pipeline_provider: str
  pipeline_name: str
  tester_image_prefix: str
  workspace_storage: str
  kube_api_url: str
  kube_token_path: str | None
  kube_ca_path: str | None
  kube_timeout_seconds: float
  watch_interval_seconds: float
  watch_max_seconds: float | None
  watch_max_consecutive_errors: int
  status_stream_interval_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("COURSEWORK_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("COURSEWORK_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("COURSEWORK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _optional_positive_float(name: str) -> float | None:
  raw = _optional_str(os.getenv(name))
  if raw is None:
    return None

  value = float(raw)
  if value <= 0:
    raise ValueError(f"{name} must be positive when provided.")

  return value


def _existing_path(raw: str | None, fallback: str) -> str | None:
  """Prefer an explicit path, otherwise use the in-cluster default when it exists."""
  explicit = _optional_str(raw)
  if explicit is not None:
    return explicit
  if os.path.exists(fallback):
    return fallback
  return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("COURSEWORK_ENV", "development").lower()
  debug = _parse_bool(os.getenv("COURSEWORK_DEBUG"))

  log_max_bytes = _positive_int("COURSEWORK_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("COURSEWORK_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("COURSEWORK_LOG_BACKUP_COUNT must be zero or a positive integer.")

  pipeline_provider = os.getenv("COURSEWORK_PIPELINE_PROVIDER", "tekton").strip().lower()
  if pipeline_provider != "tekton":
    raise ValueError("COURSEWORK_PIPELINE_PROVIDER must be 'tekton'.")

  watch_max_consecutive_errors = _positive_int("COURSEWORK_WATCH_MAX_CONSECUTIVE_ERRORS", "5")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("COURSEWORK_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("COURSEWORK_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("COURSEWORK_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("COURSEWORK_PG_CONNECT_TIMEOUT", "5"),
    auth_secret=_optional_str(os.getenv("COURSEWORK_AUTH_SECRET")),
    git_server_endpoint=(os.getenv("COURSEWORK_GIT_SERVER_ENDPOINT") or "http://gitea-http.gitea:3000").strip().rstrip("/"),
    namespace=(os.getenv("COURSEWORK_NAMESPACE") or "coursework").strip(),
    docker_registry_endpoint=(os.getenv("COURSEWORK_DOCKER_REGISTRY_ENDPOINT") or "https://registry.local").strip(),
    webhook_endpoint=(os.getenv("COURSEWORK_WEBHOOK_ENDPOINT") or "http://coursework-engine:8080").strip().rstrip("/"),
    template_owner=(os.getenv("COURSEWORK_TEMPLATE_OWNER") or "templates").strip(),
    main_ref=(os.getenv("COURSEWORK_MAIN_REF") or "refs/heads/main").strip(),
    pipeline_provider=pipeline_provider,
    pipeline_name=(os.getenv("COURSEWORK_PIPELINE_NAME") or "course-test-pipeline").strip(),
    tester_image_prefix=(os.getenv("COURSEWORK_TESTER_IMAGE_PREFIX") or "ghcr.io/coursework").strip().rstrip("/"),
    workspace_storage=(os.getenv("COURSEWORK_WORKSPACE_STORAGE") or "5Gi").strip(),
    kube_api_url=(os.getenv("COURSEWORK_KUBE_API_URL") or "https://kubernetes.default.svc").strip().rstrip("/"),
    kube_token_path=_existing_path(os.getenv("COURSEWORK_KUBE_TOKEN_PATH"), _IN_CLUSTER_TOKEN_PATH),
    kube_ca_path=_existing_path(os.getenv("COURSEWORK_KUBE_CA_PATH"), _IN_CLUSTER_CA_PATH),
    kube_timeout_seconds=_positive_float("COURSEWORK_KUBE_TIMEOUT_SECONDS", "10"),
    watch_interval_seconds=_positive_float("COURSEWORK_WATCH_INTERVAL_SECONDS", "10"),
    watch_max_seconds=_optional_positive_float("COURSEWORK_WATCH_MAX_SECONDS"),
    watch_max_consecutive_errors=watch_max_consecutive_errors,
    status_stream_interval_seconds=_positive_float("COURSEWORK_STATUS_STREAM_INTERVAL_SECONDS", "5"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("COURSEWORK_DEBUG"))
  pg_connect_timeout = _positive_int("COURSEWORK_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("COURSEWORK_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
