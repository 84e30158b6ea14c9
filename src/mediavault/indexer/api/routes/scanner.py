"""Scan triggers and the notification stream."""

import asyncio
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ...models import Notification
from ...scan_job import ScanJob

router = APIRouter()
logger = logging.getLogger(__name__)

# Seconds between keep-alive comments on an idle stream
KEEPALIVE_INTERVAL = 15.0


def job_payload(job: ScanJob) -> dict:
    result = job.result
    return {
        "job_id": job.job_id,
        "user_id": job.user_id,
        "state": job.state.value,
        "progress": job.progress,
        "finished": result.finished,
        "success": result.success,
        "message": result.message,
    }


def format_event(notification: Notification) -> str:
    """Encode a notification as one server-sent event."""
    payload = {
        "key": notification.key,
        "type": notification.type.value,
        "header": notification.header,
        "content": notification.content,
        "progress": notification.progress,
        "positive": notification.positive,
        "negative": notification.negative,
        "timeout": notification.timeout,
    }
    return f"event: {notification.type.value}\ndata: {json.dumps(payload)}\n\n"


@router.post("/scan")
def scan_all(request: Request):
    jobs = request.app.state.library.scan_all()
    return {"jobs": [job_payload(job) for job in jobs]}


@router.post("/scan/{user_id}")
def scan_user(user_id: str, request: Request, regenerate_thumbnails: bool = False):
    job = request.app.state.library.scan_user(user_id, regenerate_thumbnails=regenerate_thumbnails)
    return job_payload(job)


@router.delete("/scan/{user_id}")
def cancel_user_scan(user_id: str, request: Request):
    cancelled = request.app.state.library.orchestrator.cancel_user_scan(user_id)
    return {"cancelled": cancelled}


@router.get("/notifications")
async def notifications(request: Request):
    """Stream scan notifications as server-sent events."""
    subscription = request.app.state.library.subscribe()

    async def event_stream():
        try:
            while not subscription.closed:
                notification = await asyncio.to_thread(subscription.get, KEEPALIVE_INTERVAL)
                if await request.is_disconnected():
                    break
                if notification is None:
                    yield ": keep-alive\n\n"
                    continue
                yield format_event(notification)
        finally:
            subscription.close()
            logger.debug("Notification stream closed")

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)
