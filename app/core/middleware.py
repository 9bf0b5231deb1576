import json
import logging
import time
import urllib.parse
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.config import get_settings

logger = logging.getLogger("app.core.middleware")

_SENSITIVE_KEYS = {"password", "token", "authorization", "cookie", "secret", "email", "name", "phone", "p256dh", "auth", "keys"}
# Notification and subscription responses are per user; shared caches must not keep them.
_NO_STORE_PREFIXES = ("/api/push", "/api/notifications")


def _endpoint_host(value: Any) -> str:
  """Reduce a push endpoint to its provider host; the path is a device capability URL."""
  if not isinstance(value, str):
    return "***"
  host = urllib.parse.urlparse(value).hostname
  return f"<{host}>" if host else "***"


def _redact(data: Any) -> Any:
  if isinstance(data, dict):
    redacted: dict[str, Any] = {}
    for key, value in data.items():
      lowered = str(key).lower()
      if lowered == "endpoint":
        redacted[key] = _endpoint_host(value)
      elif lowered in _SENSITIVE_KEYS:
        redacted[key] = "***"
      else:
        redacted[key] = _redact(value)
    return redacted
  if isinstance(data, list):
    return [_redact(item) for item in data]
  return data


def _request_target(scope: Scope) -> str:
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    return f"{path}?{query_string.decode('latin-1')}"
  return path


def format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  """Render a request body for the log with key material and endpoints removed."""
  if not body:
    return "<empty>"
  if not content_type or "application/json" not in content_type.lower():
    return f"<non-json body {len(body)} bytes>"
  if len(body) > max_bytes:
    return f"<json body {len(body)} bytes, over log limit>"

  try:
    parsed = json.loads(body.decode("utf-8"))
  except (UnicodeDecodeError, json.JSONDecodeError):
    return f"<unparseable json body {len(body)} bytes>"

  return json.dumps(_redact(parsed), ensure_ascii=True)


async def _drain_body(receive: Receive) -> bytes:
  chunks: list[bytes] = []
  while True:
    message = await receive()
    if message.get("type") != "http.request":
      break
    chunks.append(message.get("body", b""))
    if not message.get("more_body", False):
      break
  return b"".join(chunks)


class RequestLoggingMiddleware:
  """Tag every request with an id, log its outcome and optionally its redacted body."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    request_id = str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    method = scope.get("method", "UNKNOWN")
    target = _request_target(scope)
    started = time.perf_counter()

    downstream_receive = receive
    if settings.log_http_bodies:
      headers = {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
      request_body = await _drain_body(receive)
      logger.info("Request body request_id=%s %s %s body=%s", request_id, method, target, format_body_for_log(request_body, headers.get("content-type"), settings.log_http_body_bytes))
      replayed = False

      async def downstream_receive() -> Message:
        nonlocal replayed
        if replayed:
          return await receive()
        replayed = True
        return {"type": "http.request", "body": request_body, "more_body": False}

    status_code = 0

    async def send_with_request_id(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message.get("status", 0)
        MutableHeaders(scope=message).setdefault("x-request-id", request_id)
      await send(message)

    try:
      await self.app(scope, downstream_receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      log = logger.warning if status_code >= 500 or status_code == 0 else logger.info
      log("%s %s status=%s request_id=%s took=%.2fms", method, target, status_code, request_id, elapsed_ms)


class SecurityHeadersMiddleware:
  """Strip server fingerprint headers and keep per-user API responses out of caches."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    no_store = scope.get("path", "").startswith(_NO_STORE_PREFIXES)

    async def send_with_headers(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for header in ("x-powered-by", "server"):
          if header in headers:
            del headers[header]
        headers.setdefault("x-content-type-options", "nosniff")
        if no_store:
          headers["cache-control"] = "no-store"
      await send(message)

    await self.app(scope, receive, send_with_headers)
