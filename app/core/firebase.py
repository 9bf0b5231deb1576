import logging
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials

from app.config import get_settings

logger = logging.getLogger(__name__)


def initialize_firebase() -> bool:
  """Initialize the Firebase Admin SDK once; returns whether an app is available."""
  if firebase_admin._apps:
    return True

  settings = get_settings()
  if not settings.firebase_project_id:
    logger.warning("FIREBASE_PROJECT_ID not set; bearer tokens cannot be verified.")
    return False

  options = {"projectId": settings.firebase_project_id}
  try:
    if settings.firebase_service_account_json_path:
      firebase_admin.initialize_app(credentials.Certificate(settings.firebase_service_account_json_path), options)
    else:
      # Application Default Credentials
      firebase_admin.initialize_app(options=options)
  except Exception as exc:  # noqa: BLE001
    logger.error("Failed to initialize Firebase Admin SDK: %s", exc)
    return False

  logger.info("Firebase Admin SDK initialized project_id=%s", settings.firebase_project_id)
  return True


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Return the decoded claims of a valid, unrevoked ID token, else None.

  Revocation is checked so staff whose sessions were revoked stop receiving data
  immediately instead of at token expiry.
  """
  if not initialize_firebase():
    return None

  try:
    return auth.verify_id_token(id_token, check_revoked=True)
  except auth.RevokedIdTokenError:
    logger.warning("Rejected revoked ID token.")
    return None
  except auth.UserDisabledError:
    logger.warning("Rejected ID token of a disabled account.")
    return None
  except Exception as exc:  # noqa: BLE001
    logger.error("Token verification failed: %s", exc)
    return None
