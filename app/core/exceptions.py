import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.notifications.contracts import PushNotConfiguredError

logger = logging.getLogger(__name__)

# Subscription payloads carry device key material; none of these may reach a response or a log line.
_SCRUBBED_FIELDS = {"input", "body", "payload", "keys", "p256dh", "auth"}


def _json_safe(value: Any) -> Any:
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items() if key not in _SCRUBBED_FIELDS}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return type(value).__name__
  return str(value)


def _error_response(request: Request, status_code: int, detail: Any, headers: dict[str, str] | None = None) -> JSONResponse:
  """Error body with the request id so client reports can be matched to server logs."""
  content: dict[str, Any] = {"detail": detail}
  request_id = getattr(request.state, "request_id", None)
  if request_id:
    content["requestId"] = request_id
  return JSONResponse(status_code=status_code, content=content, headers=headers)


def validation_errors_for_response(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Validation errors without the submitted values or the context they were echoed into."""
  return [_json_safe({key: value for key, value in error.items() if key != "input"}) for error in errors]


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger.error("Unhandled error request_id=%s path=%s error_type=%s", getattr(request.state, "request_id", None), request.url.path, type(exc).__name__, exc_info=True)
  return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  errors = validation_errors_for_response(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s errors=%s", getattr(request.state, "request_id", None), request.url.path, errors)
  return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, errors)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Mask 5xx details except 503, whose message tells the client push is unavailable."""
  headers = getattr(exc, "headers", None)
  if exc.status_code >= 500 and exc.status_code != status.HTTP_503_SERVICE_UNAVAILABLE:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", getattr(request.state, "request_id", None), request.url.path, exc.status_code, exc.detail)
    return _error_response(request, exc.status_code, "Internal Server Error", headers)

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", getattr(request.state, "request_id", None), request.url.path, exc.status_code, _json_safe(exc.detail))
  return _error_response(request, exc.status_code, exc.detail, headers)


async def push_not_configured_exception_handler(request: Request, exc: PushNotConfiguredError) -> JSONResponse:
  """Report missing VAPID configuration as a service-unavailable condition."""
  logger.warning("Push not configured request_id=%s path=%s", getattr(request.state, "request_id", None), request.url.path)
  return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Push notifications not configured")
