"""Change-notification endpoint for the list subscription."""

import asyncio

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse

from ...schemas.messages import MessageKind
from ...tasks.sync import enqueue_message
from ...utils.logging import setup_logger
from ..dependencies import require_webhook_key
from ..webhook import build_enqueue, try_handshake

logger = setup_logger(__name__, context={"component": "NotificationsAPI"})
router = APIRouter(dependencies=[Depends(require_webhook_key)])


@router.api_route("/notifications", methods=["GET", "POST"])
async def receive_notification(request: Request) -> Response:
    """
    Answer the subscription handshake or queue a change notification.

    Returns:
        200 with the echoed token, 400 for an empty body, 202 once queued,
        or 500 when the queue rejects the message so the sender redelivers.
    """
    handshake = try_handshake(request)
    if handshake is not None:
        logger.info("Answered subscription validation handshake", extra={"status": "handshake"})
        return handshake

    response, body = await build_enqueue(request)
    if body is None:
        logger.warning("Rejected notification with empty body", extra={"status": "rejected"})
        return response

    try:
        # The broker call blocks; keep it off the event loop.
        await asyncio.to_thread(enqueue_message, body, MessageKind.NOTIFICATION)
    except Exception:
        logger.exception("Failed to enqueue change notification", extra={"status": "error"})
        return PlainTextResponse(
            content="Failed to queue notification.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    logger.info("Queued change notification", extra={"status": "queued"})
    return response
