import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.deps import get_notification_composer
from app.core.database import dispose_engine
from app.core.firebase import initialize_firebase
from app.core.logging import initialize_logging
from app.notifications.factory import push_configured

logger = logging.getLogger("app.core.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, auth and the push pipeline; drain queued fan-outs on shutdown."""
  from app.config import get_settings

  settings = get_settings()

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")

    initialize_firebase()

    if push_configured(settings):
      # Building the composer parses the VAPID key, so a bad key surfaces at boot.
      get_notification_composer()
      logger.info("Push notifications enabled sub=%s ttl=%ss", settings.push_vapid_sub, settings.push_ttl_seconds)
    else:
      logger.warning("Push notifications not configured; push endpoints will return 503.")

  except Exception:
    # Log initialization failures but allow the app to continue starting.
    logger.warning("Startup initialization failed; continuing with degraded features.", exc_info=True)

  yield

  # Let queued push fan-outs finish before the event loop closes.
  try:
    await get_notification_composer().drain()
  except Exception:
    logger.warning("Failed draining background push tasks on shutdown.", exc_info=True)

  await dispose_engine()
