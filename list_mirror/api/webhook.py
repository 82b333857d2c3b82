"""Push-notification ingress helpers.

The subscription handshake and the notification body are handled without
interpreting the payload; decoding happens once the message is dequeued.
"""

from __future__ import annotations

from fastapi import Request, Response, status
from fastapi.responses import PlainTextResponse

VALIDATION_TOKEN_PARAM = "validationtoken"


def try_handshake(request: Request) -> Response | None:
    """Echo a subscription validation token, or return None for a data notification."""

    for name, value in request.query_params.multi_items():
        if name.lower() == VALIDATION_TOKEN_PARAM:
            return PlainTextResponse(content=value, status_code=status.HTTP_200_OK)
    return None


async def build_enqueue(request: Request) -> tuple[Response, str | None]:
    """Return the response for a notification and the raw body to queue, if any."""

    body = (await request.body()).decode("utf-8", errors="replace")
    if not body.strip():
        return (
            PlainTextResponse(content="Empty body", status_code=status.HTTP_400_BAD_REQUEST),
            None,
        )
    return PlainTextResponse(content="Queued.", status_code=status.HTTP_202_ACCEPTED), body
