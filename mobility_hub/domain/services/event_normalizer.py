"""
Event Normalizer

Cloud API webhook envelope -> InboundEvent list. Media is referenced by id
only; nothing is downloaded here.

The envelope is signed but its shape is not trusted: a field of the wrong
type makes that one message UNHANDLED or skipped, never the whole delivery.
"""
from typing import Any, Optional

from pydantic import ValidationError

from mobility_hub.core.logging import get_logger
from mobility_hub.state_machine.events import EventKind, InboundEvent

logger = get_logger(__name__)

# 2106-02-07; anything later is not a platform clock and overflows date math
_MAX_TIMESTAMP = 2**32


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> Optional[str]:
    """Strings as-is, plain integers as digits, anything else None"""
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _split_list_id(raw_id: str) -> tuple[str, Optional[str]]:
    """'ND_DRIVER:42' -> ('ND_DRIVER', '42')"""
    action, sep, secondary = raw_id.partition(":")
    return action, (secondary if sep else None)


def _to_timestamp(value: Any) -> int:
    try:
        timestamp = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return timestamp if 0 <= timestamp <= _MAX_TIMESTAMP else 0


def normalize_message(message: dict) -> Optional[InboundEvent]:
    """One entry of value.messages -> InboundEvent, None when unusable"""
    source_id = _as_str(message.get("id"))
    sender = _as_str(message.get("from"))
    if not source_id or not sender:
        return None

    base = {
        "source_id": source_id,
        "sender": sender,
        "timestamp": _to_timestamp(message.get("timestamp")),
    }
    msg_type = message.get("type")

    if msg_type == "text":
        body = _as_str(_as_dict(message.get("text")).get("body"))
        if body is not None:
            return InboundEvent(kind=EventKind.TEXT, text=body, **base)

    if msg_type == "interactive":
        interactive = _as_dict(message.get("interactive"))
        button_id = _as_str(_as_dict(interactive.get("button_reply")).get("id"))
        if button_id:
            return InboundEvent(kind=EventKind.BUTTON, action=button_id, **base)
        list_id = _as_str(_as_dict(interactive.get("list_reply")).get("id"))
        if list_id:
            action, secondary_id = _split_list_id(list_id)
            return InboundEvent(kind=EventKind.LIST, action=action, secondary_id=secondary_id, **base)

    if msg_type == "button":
        # template quick-reply
        button = _as_dict(message.get("button"))
        action = _as_str(button.get("payload")) or _as_str(button.get("text"))
        if action:
            return InboundEvent(kind=EventKind.BUTTON, action=action, **base)

    if msg_type in ("image", "document"):
        media = _as_dict(message.get(msg_type))
        media_id = _as_str(media.get("id"))
        if media_id:
            kind = EventKind.IMAGE if msg_type == "image" else EventKind.DOCUMENT
            return InboundEvent(kind=kind, media_id=media_id, mime_type=_as_str(media.get("mime_type")), **base)

    if msg_type == "location":
        location = _as_dict(message.get("location"))
        try:
            latitude = float(location["latitude"])
            longitude = float(location["longitude"])
        except (KeyError, TypeError, ValueError):
            pass
        else:
            return InboundEvent(kind=EventKind.LOCATION, latitude=latitude, longitude=longitude, **base)

    return InboundEvent(kind=EventKind.UNHANDLED, **base)


def normalize_payload(payload: Any) -> list[InboundEvent]:
    """
    Walk entry[].changes[].value.messages[].

    Status callbacks (value.statuses) carry no messages and yield nothing.
    """
    events: list[InboundEvent] = []
    if not isinstance(payload, dict):
        return events

    for entry in _as_list(payload.get("entry")):
        for change in _as_list(_as_dict(entry).get("changes")):
            value = _as_dict(_as_dict(change).get("value"))
            for message in _as_list(value.get("messages")):
                if not isinstance(message, dict):
                    continue
                try:
                    event = normalize_message(message)
                except ValidationError as e:
                    logger.warning(
                        "Skipping malformed message",
                        extra_data={"errors": e.error_count()},
                    )
                    continue
                if event is None:
                    logger.debug("Skipping message without id or sender")
                    continue
                events.append(event)

    return events

