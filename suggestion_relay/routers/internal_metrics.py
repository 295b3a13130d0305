from __future__ import annotations

from fastapi import APIRouter, Depends

from suggestion_relay.core.metrics import request_metrics
from suggestion_relay.deps import require_admin_token
from suggestion_relay.services.change_feed import response_feed

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("/requests")
def request_endpoint_metrics(_: None = Depends(require_admin_token)):
    return {
        "endpoints": request_metrics.snapshot(),
        "lindy": request_metrics.snapshot_lindy(),
        "stream_subscribers": response_feed.subscriber_count(),
    }
