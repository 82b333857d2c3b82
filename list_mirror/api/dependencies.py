"""Shared FastAPI dependencies."""

from __future__ import annotations

import secrets
from collections.abc import Sequence

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyQuery

from ..exceptions import WebhookAuthError
from ..utils.config import get_settings

# Push senders can only append the key to the subscription URL.
webhook_key_query = APIKeyQuery(name="code", auto_error=False)


def verify_webhook_key(code: str | None, configured_keys: Sequence[str]) -> str:
    """Return the configured key matching ``code``.

    Raises:
        WebhookAuthError: With status 401 when no keys are configured or none
            was presented, 403 when the presented key is unknown.
    """

    if not configured_keys:
        raise WebhookAuthError(
            "Webhook authentication is not configured.",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    if not code:
        raise WebhookAuthError("Missing webhook key.", status_code=status.HTTP_401_UNAUTHORIZED)

    matched = [key for key in configured_keys if secrets.compare_digest(code, key)]
    if not matched:
        raise WebhookAuthError("Invalid webhook key.", status_code=status.HTTP_403_FORBIDDEN)
    return matched[0]


async def require_webhook_key(code: str | None = Security(webhook_key_query)) -> str:
    try:
        return verify_webhook_key(code, get_settings().webhook_keys)
    except WebhookAuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
