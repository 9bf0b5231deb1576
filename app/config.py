"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_PUSH_HOSTS = ("fcm.googleapis.com", "updates.push.services.mozilla.com", "push.services.mozilla.com", "web.push.apple.com")


@dataclass(frozen=True)
class Settings:
  """Typed settings for the care coordination service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_http_bodies: bool
  log_http_body_bytes: int
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  push_notifications_enabled: bool
  push_vapid_public_key: str | None
  push_vapid_private_key: str | None
  push_vapid_sub: str
  push_ttl_seconds: int
  push_timeout_seconds: float
  push_allowed_hosts: tuple[str, ...]
  service_worker_path: str
  service_worker_scope: str


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("CARE_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("CARE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("CARE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_hosts(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return DEFAULT_PUSH_HOSTS

  hosts = tuple(host.strip().lower() for host in raw.split(",") if host.strip())
  return hosts or DEFAULT_PUSH_HOSTS


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CARE_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("CARE_DEBUG"))

  log_max_bytes = int(os.getenv("CARE_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("CARE_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("CARE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CARE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("CARE_LOG_HTTP_4XX"))
  # Allow opt-in logging of HTTP request/response bodies with a size cap.
  log_http_bodies = _parse_bool(os.getenv("CARE_LOG_HTTP_BODIES"))
  log_http_body_bytes = int(os.getenv("CARE_LOG_HTTP_BODY_BYTES", "2048"))
  if log_http_body_bytes <= 0:
    raise ValueError("CARE_LOG_HTTP_BODY_BYTES must be a positive integer.")

  push_notifications_enabled = _parse_bool(os.getenv("CARE_PUSH_NOTIFICATIONS_ENABLED"))
  push_vapid_public_key = _optional_str(os.getenv("CARE_PUSH_VAPID_PUBLIC_KEY"))
  push_vapid_private_key = _optional_str(os.getenv("CARE_PUSH_VAPID_PRIVATE_KEY"))
  push_vapid_sub = _optional_str(os.getenv("CARE_PUSH_VAPID_SUB")) or "mailto:admin@carecoordination.app"

  push_ttl_seconds = int(os.getenv("CARE_PUSH_TTL_SECONDS", "86400"))
  if push_ttl_seconds < 0:
    raise ValueError("CARE_PUSH_TTL_SECONDS must be zero or a positive integer.")

  push_timeout_seconds = float(os.getenv("CARE_PUSH_TIMEOUT_SECONDS", "10"))
  if push_timeout_seconds <= 0:
    raise ValueError("CARE_PUSH_TIMEOUT_SECONDS must be positive.")

  # Validate push configuration only when push notifications are enabled.
  if push_notifications_enabled:
    if not push_vapid_public_key:
      raise ValueError("CARE_PUSH_VAPID_PUBLIC_KEY must be set when push notifications are enabled.")

    if not push_vapid_private_key:
      raise ValueError("CARE_PUSH_VAPID_PRIVATE_KEY must be set when push notifications are enabled.")

    if not (push_vapid_sub.startswith("mailto:") or push_vapid_sub.startswith("https://")):
      raise ValueError("CARE_PUSH_VAPID_SUB must start with 'mailto:' or 'https://'.")

  # The worker script must live at the origin root so its scope covers the whole app.
  service_worker_path = (os.getenv("CARE_SERVICE_WORKER_PATH") or "/sw.js").strip()
  service_worker_scope = (os.getenv("CARE_SERVICE_WORKER_SCOPE") or "/").strip()
  if not service_worker_path.startswith("/"):
    raise ValueError("CARE_SERVICE_WORKER_PATH must be an absolute path.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("CARE_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    pg_dsn=os.getenv("CARE_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=int(os.getenv("CARE_PG_CONNECT_TIMEOUT", "5")),
    firebase_project_id=os.getenv("FIREBASE_PROJECT_ID"),
    firebase_service_account_json_path=os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH"),
    push_notifications_enabled=push_notifications_enabled,
    push_vapid_public_key=push_vapid_public_key,
    push_vapid_private_key=push_vapid_private_key,
    push_vapid_sub=push_vapid_sub,
    push_ttl_seconds=push_ttl_seconds,
    push_timeout_seconds=push_timeout_seconds,
    push_allowed_hosts=_parse_hosts(os.getenv("CARE_PUSH_ALLOWED_HOSTS")),
    service_worker_path=service_worker_path,
    service_worker_scope=service_worker_scope,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("CARE_DEBUG"))
  pg_connect_timeout = int(os.getenv("CARE_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("CARE_PG_CONNECT_TIMEOUT must be a positive integer.")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("CARE_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
