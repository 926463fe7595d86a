"""Firebase application initialisation for the Firestore inbox."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials

from backend.app.core.config import Settings, settings

logger = logging.getLogger(__name__)


def _build_init_kwargs(config: Settings) -> Dict[str, Any]:
    init_kwargs: Dict[str, Any] = {}
    if config.FIREBASE_PROJECT_ID:
        init_kwargs["projectId"] = config.FIREBASE_PROJECT_ID
    return init_kwargs


def get_firebase_app(config: Optional[Settings] = None) -> firebase_admin.App:
    """Return the default Firebase app, initialising it on first use."""
    config = config or settings

    if not firebase_admin._apps:  # type: ignore[attr-defined]
        if config.FIREBASE_CREDENTIALS_PATH:
            cred = credentials.Certificate(config.FIREBASE_CREDENTIALS_PATH)
        else:
            cred = credentials.ApplicationDefault()

        firebase_admin.initialize_app(cred, _build_init_kwargs(config))
        logger.info("Firebase app initialised (project=%s)", config.FIREBASE_PROJECT_ID or "default")

    return firebase_admin.get_app()
