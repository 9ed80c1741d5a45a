"""Firebase Admin bootstrap and ID-token verification for caller identity."""

from __future__ import annotations

import logging
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials

from proposal_engine.config import Settings, get_settings

logger = logging.getLogger(__name__)

_APP_NAME = "proposal-engine"


def _firebase_app() -> firebase_admin.App | None:
  try:
    return firebase_admin.get_app(_APP_NAME)
  except ValueError:
    return None


def initialize_firebase(settings: Settings | None = None) -> firebase_admin.App | None:
  """Create the named Firebase app once; returns None when no project is configured."""
  existing = _firebase_app()
  if existing is not None:
    return existing

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("PROPOSAL_FIREBASE_PROJECT_ID not set; bearer tokens cannot be verified.")
    return None

  options = {"projectId": settings.firebase_project_id}
  # Application Default Credentials apply when no service account file is given.
  cred = credentials.Certificate(settings.firebase_service_account_json_path) if settings.firebase_service_account_json_path else None
  try:
    app = firebase_admin.initialize_app(cred, options=options, name=_APP_NAME)
  except (ValueError, OSError) as exc:
    logger.error("Firebase initialization failed for project=%s: %s", settings.firebase_project_id, exc)
    return None

  logger.info("Firebase initialized for project=%s", settings.firebase_project_id)
  return app


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Return the decoded claims of a valid ID token, or None when it cannot be trusted."""
  app = initialize_firebase()
  if app is None:
    return None

  try:
    return auth.verify_id_token(id_token, app=app)
  except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError, auth.CertificateFetchError, ValueError) as exc:
    logger.warning("Rejected bearer token: %s", type(exc).__name__)
    return None
