"""Push notification delivery implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http import HTTPStatus

from py_vapid import Vapid
from pywebpush import WebPushException, webpush

from app.notifications.contracts import InvalidPushSubscriptionError, PushDelivery, PushNotConfiguredError, PushSender, TransientPushProviderError

logger = logging.getLogger(__name__)

_GONE_STATUSES = {HTTPStatus.NOT_FOUND, HTTPStatus.GONE}


@dataclass(frozen=True)
class VapidConfig:
  """Configuration required to sign Web Push requests."""

  public_key: str
  private_key: str
  sub: str


def load_vapid_key(raw: str) -> Vapid:
  """Parse a VAPID private key from a PEM block or raw base64url DER."""
  # .env files often carry PEM keys with literal \n sequences.
  normalized = raw.replace("\\n", "\n").strip()
  if normalized.startswith("-----"):
    return Vapid.from_pem(normalized.encode())
  return Vapid.from_string(normalized)


class WebPushSender(PushSender):
  """`pywebpush` backed sender that classifies failures as permanent or transient.

  Each call makes exactly one delivery attempt. Retrying is left to the next business
  event that triggers a notification for the same user.
  """

  def __init__(self, *, vapid_config: VapidConfig, ttl_seconds: int = 86400, timeout_seconds: float = 10.0) -> None:
    self._vapid_config = vapid_config
    self._vapid = load_vapid_key(vapid_config.private_key)
    self._ttl_seconds = ttl_seconds
    self._timeout_seconds = timeout_seconds

  @property
  def public_key(self) -> str:
    return self._vapid_config.public_key

  def send(self, delivery: PushDelivery) -> None:
    """Send one encrypted Web Push message to a stored subscription."""
    try:
      # A TTL of 0 would drop the message if the device is offline at send time.
      webpush(subscription_info=delivery.subscription_data, data=delivery.payload, vapid_private_key=self._vapid, vapid_claims={"sub": self._vapid_config.sub}, ttl=self._ttl_seconds, timeout=self._timeout_seconds)
    except WebPushException as exc:
      status_code = _extract_status_code(exc)

      if status_code in _GONE_STATUSES:
        raise InvalidPushSubscriptionError(f"Push subscription is gone (status={status_code})", status_code=status_code) from exc

      raise TransientPushProviderError(f"Push delivery failed (status={status_code if status_code else 'unknown'})", status_code=status_code) from exc
    except Exception as exc:  # noqa: BLE001
      # Network errors surface from requests rather than pywebpush.
      raise TransientPushProviderError(f"Push delivery failed ({type(exc).__name__}: {exc})") from exc


class NullPushSender(PushSender):
  """Sender used when push notifications are disabled or unconfigured."""

  @property
  def public_key(self) -> str | None:
    return None

  def send(self, delivery: PushDelivery) -> None:
    raise PushNotConfiguredError("Push notifications not configured")


def _extract_status_code(exc: WebPushException) -> int | None:
  """Extract an HTTP status code from a pywebpush exception when available."""
  response = getattr(exc, "response", None)
  if response is None:
    return None

  status = getattr(response, "status_code", None)
  if isinstance(status, int):
    return status

  return None
