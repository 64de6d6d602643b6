"""Evolution API adapter - validate and normalize webhook payloads.

normalize() returns None for events that are not inbound text messages
(our own outgoing messages, media without caption, other event types).
"""

import re
from datetime import datetime, timezone
from typing import Any

from jarvis.domain.models import InboundMessage

MESSAGE_EVENT = "messages.upsert"

_JID_SUFFIX = "@s.whatsapp.net"
_NON_PHONE_CHARS = re.compile(r"[^\d+]")


class InvalidPayloadError(Exception):
    """Raised when Evolution payload has invalid shape."""


def normalize_phone(raw: str) -> str:
    """International format: 0612345678 -> +212612345678, 2126... -> +2126..."""
    cleaned = _NON_PHONE_CHARS.sub("", raw)
    if cleaned.startswith("0") and len(cleaned) == 10:
        return f"+212{cleaned[1:]}"
    if not cleaned.startswith("+") and len(cleaned) > 10:
        return f"+{cleaned}"
    return cleaned


def phone_to_jid(phone: str) -> str:
    return f"{normalize_phone(phone).lstrip('+')}{_JID_SUFFIX}"


def _received_at(data: dict[str, Any]) -> datetime:
    timestamp = data.get("messageTimestamp")
    if isinstance(timestamp, (int, float)) and timestamp > 0:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    if isinstance(timestamp, str) and timestamp.isdigit():
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    return datetime.now(timezone.utc)


def normalize(payload: dict[str, Any]) -> InboundMessage | None:
    """Turn an Evolution webhook payload into an InboundMessage.

    Returns:
        InboundMessage (contains PII: phone, text), or None if the event
        is not an inbound text message.

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be an object")

    event = payload.get("event")
    if event is not None and event != MESSAGE_EVENT:
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        raise InvalidPayloadError("missing data")
    key = data.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("missing data.key")

    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    remote_jid = key.get("remoteJid")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    if key.get("fromMe"):
        return None

    message = data.get("message") or {}
    text = message.get("conversation") or (message.get("extendedTextMessage") or {}).get("text")
    if not text or not isinstance(text, str) or not text.strip():
        return None

    sender_name = data.get("pushName")
    return InboundMessage(
        message_id=message_id,
        phone=normalize_phone(remote_jid.replace(_JID_SUFFIX, "")),
        text=text.strip(),
        received_at=_received_at(data),
        sender_name=sender_name if isinstance(sender_name, str) else None,
    )
