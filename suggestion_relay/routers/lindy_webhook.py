import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from suggestion_relay.core.database import get_db
from suggestion_relay.services.lindy_callback import handle_callback

router = APIRouter(tags=["lindy-webhook"])
logger = logging.getLogger(__name__)


@router.post("/api/lindy/webhooks")
async def lindy_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    try:
        outcome = await run_in_threadpool(
            handle_callback,
            db,
            raw_body=raw_body,
            headers=request.headers,
            endpoint=str(request.url),
        )
    except Exception as exc:
        # o Lindy precisa sempre de uma resposta HTTP
        logger.exception("Lindy webhook processing error")
        return JSONResponse(
            status_code=500,
            content={"error": "Webhook processing failed", "details": str(exc)},
        )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
