"""Pydantic schemas for queued sync messages."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..exceptions import MessageParseError


class MessageKind(str, Enum):
    """Explicit tag carried beside every queued message."""

    NOTIFICATION = "notification"
    CONTINUATION = "continuation"


class ChangeNotice(BaseModel):
    """One push notification describing a change to the monitored list."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    client_state: str | None = Field(default=None, alias="clientState")
    change_type: str | None = Field(default=None, alias="changeType")
    resource: str | None = None
    tenant_id: str | None = Field(default=None, alias="tenantId")


class NotificationEnvelope(BaseModel):
    """Fresh batch of notices as delivered by the push mechanism."""

    model_config = ConfigDict(extra="allow")

    value: list[ChangeNotice] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _reject_continuation_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and {"itemIds", "deltaLink"} & data.keys():
            raise ValueError("continuation payload tagged as a notification")
        return data

    @field_validator("value", mode="before")
    @classmethod
    def _null_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ContinuationPayload(BaseModel):
    """Remaining item ids of a truncated step and the cursor they belong to."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    item_ids: list[str] = Field(alias="itemIds")
    delta_link: str = Field(alias="deltaLink", min_length=1)

    def to_message(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))


def parse_message(kind: MessageKind | str, raw: str) -> NotificationEnvelope | ContinuationPayload:
    """Decode ``raw`` according to its declared kind.

    Raises:
        MessageParseError: If the kind is unknown or the text does not match it.
    """

    try:
        resolved = MessageKind(kind)
    except ValueError as exc:
        raise MessageParseError(f"Unknown message kind: {kind!r}") from exc

    model = NotificationEnvelope if resolved is MessageKind.NOTIFICATION else ContinuationPayload
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise MessageParseError(f"Invalid {resolved.value} message: {exc}") from exc
