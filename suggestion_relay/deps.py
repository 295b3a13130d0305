from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, status

from suggestion_relay.core.config import ADMIN_API_TOKEN, IS_PROD
from suggestion_relay.core.database import SessionLocal
from suggestion_relay.services.suggestion_bridge import SessionFactory, SuggestionBridge, build_bridge

logger = logging.getLogger(__name__)


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_suggestion_bridge(session_factory: SessionFactory = Depends(get_session_factory)) -> SuggestionBridge:
    return build_bridge(session_factory=session_factory)


def require_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    """Fora de produção sem ADMIN_API_TOKEN as rotas admin ficam abertas."""
    configured = (ADMIN_API_TOKEN or "").strip()
    incoming = (x_admin_token or "").strip()
    if not configured:
        if IS_PROD:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Admin routes in production require ADMIN_API_TOKEN",
            )
        return
    if not hmac.compare_digest(incoming.encode("utf-8"), configured.encode("utf-8")):
        logger.warning("Admin access denied: invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
