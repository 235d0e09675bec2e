from __future__ import annotations

import json
from typing import Union

from pydantic import ValidationError

from .events import Event, get_event
from .exceptions import DecodeError

_PREVIEW_CHARS = 512


def _preview(content: str) -> str:
    if len(content) <= _PREVIEW_CHARS:
        return content
    return content[:_PREVIEW_CHARS] + "..."


def decode_event(raw: Union[str, bytes]) -> Event:
    """Decode one wire payload into an identified event.

    Raises ``DecodeError`` when the envelope or the payload is malformed and
    ``UnknownEventError`` when the ``eventType`` tag is not in the catalog.
    """
    if isinstance(raw, bytes):
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(
                f"failed to decode the event type, content is not utf-8: {exc}",
                content=repr(raw[:_PREVIEW_CHARS]),
            ) from exc
    else:
        content = raw

    try:
        envelope = json.loads(content)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(
            f"failed to decode the event type, content: {_preview(content)}, "
            f"error: {exc}",
            content=content,
        ) from exc
    if not isinstance(envelope, dict):
        raise DecodeError(
            f"failed to decode the event type, content: {_preview(content)}, "
            "error: envelope must be a JSON object",
            content=content,
        )
    event_type = envelope.get("eventType")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError(
            f"failed to decode the event type, content: {_preview(content)}, "
            "error: missing eventType",
            content=content,
        )

    entry = get_event(event_type)

    try:
        payload = entry.model.model_validate(envelope)
    except ValidationError as exc:
        raise DecodeError(
            f"failed to decode the event, id: {int(entry.id)}, error: {exc}",
            content=content,
        ) from exc
    return Event(id=entry.id, name=entry.name, payload=payload)


__all__ = ["decode_event"]
