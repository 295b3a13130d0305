from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from suggestion_relay.core.metrics import request_metrics
from suggestion_relay.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        status_code = 500
        endpoint = request.url.path
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            business_id = _extract_business_id(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)

            set_request_context(business_id=business_id)
            request_metrics.observe(endpoint=_route_template(request), method=method, status_code=status_code, duration_ms=duration_ms)

            logger.info(
                "request completed",
                extra={
                    "request_id": request_id,
                    "business_id": business_id,
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()


def _extract_business_id(request: Request) -> str | None:
    business = request.path_params.get("business_id") or request.query_params.get("business_id")
    if business:
        return str(business)
    return request.headers.get("X-Business-ID") or None


def _route_template(request: Request) -> str:
    # um único bucket para todos os business_id da mesma rota
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path
