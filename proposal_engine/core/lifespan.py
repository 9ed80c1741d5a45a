import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from proposal_engine.core.database import dispose_engine
from proposal_engine.core.firebase import initialize_firebase
from proposal_engine.core.logging import initialize_logging

# Background jobs get this long to settle before shutdown proceeds.
SHUTDOWN_GRACE_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Ensure logging is correctly set up after uvicorn starts."""
  from proposal_engine.api.deps import get_transport
  from proposal_engine.config import get_settings
  from proposal_engine.jobs.worker import wait_for_background_tasks

  settings = get_settings()
  logger = logging.getLogger("proposal_engine.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
    initialize_firebase(settings)
  except Exception:
    # Log initialization failures but allow the app to continue starting.
    logger.warning("Initial startup setup failed; continuing without it.", exc_info=True)

  yield

  await wait_for_background_tasks(timeout=SHUTDOWN_GRACE_SECONDS)
  await get_transport().aclose()
  await dispose_engine()
  logger.info("Shutdown complete.")
