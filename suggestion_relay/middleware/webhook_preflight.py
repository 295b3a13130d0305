from __future__ import annotations

from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

LINDY_WEBHOOK_PATH = "/api/lindy/webhooks"

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Lindy-Signature, X-Webhook-Signature",
}


class LindyWebhookPreflightMiddleware(BaseHTTPMiddleware):
    """Answers CORS preflight for the Lindy webhook from any origin.

    Must wrap ``CORSMiddleware``, which would otherwise reject origins
    outside ``CORS_ORIGINS``.
    """

    def __init__(self, app, *, path: str = LINDY_WEBHOOK_PATH) -> None:
        super().__init__(app)
        self._path = path.rstrip("/")

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" and request.url.path.rstrip("/") == self._path:
            return Response(status_code=200, headers=PREFLIGHT_HEADERS)
        return await call_next(request)
