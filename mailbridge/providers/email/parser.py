"""Gmail message parsing.

Turns a Gmail API `format=full` message resource into a ParsedMessage.
Nothing in here raises on malformed content: missing headers become empty
strings and undecodable parts decode to "".

Body decoding policy, applied recursively:
    1. a part with inline data is decoded directly
    2. a multipart node prefers its text/plain child
    3. then its text/html child, with tags stripped
    4. then each child in order, first non-empty result wins
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Any, Dict, List, Optional

from mailbridge.providers.email.models import (
    MAX_BODY_CHARS,
    BranchPart,
    LeafPart,
    MessagePart,
    ParsedMessage,
)

logger = logging.getLogger(__name__)

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_HTML_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def get_header(headers: Optional[List[Dict[str, Any]]], name: str) -> str:
    """Case-insensitive header lookup; "" when absent."""
    if not isinstance(headers, list):
        return ""
    wanted = name.lower()
    for header in headers:
        if not isinstance(header, dict):
            continue
        if str(header.get("name", "")).lower() == wanted:
            value = header.get("value")
            return value if isinstance(value, str) else ""
    return ""


def extract_sender_address(from_header: str) -> str:
    """Address inside angle brackets, else the raw header value.

    "Alice <alice@example.com>" -> "alice@example.com"
    "bob@example.com"           -> "bob@example.com"
    """
    match = _ANGLE_ADDRESS.search(from_header)
    return match.group(1) if match else from_header


def build_part_tree(payload: Optional[Dict[str, Any]]) -> MessagePart:
    """Convert a Gmail payload dict into a LeafPart / BranchPart tree."""
    if not isinstance(payload, dict):
        return LeafPart()

    # Fields of the wrong type are treated as absent
    mime_type = payload.get("mimeType")
    mime_type = mime_type if isinstance(mime_type, str) else ""
    children = payload.get("parts")
    if not isinstance(children, list):
        children = None
    body = payload.get("body")
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, str):
        data = None

    if children and not data:
        return BranchPart(
            mime_type=mime_type,
            parts=[build_part_tree(child) for child in children if isinstance(child, dict)],
        )
    return LeafPart(mime_type=mime_type, data=data)


def decode_data(data: Optional[str]) -> str:
    """Decode base64url part data as UTF-8, "" on any failure."""
    if not data:
        return ""
    try:
        # Gmail strips padding from base64url data
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        logger.debug(f"Undecodable message part: {e}")
        return ""


def html_to_text(html: str) -> str:
    text = _HTML_TAG.sub("", html)
    text = text.replace("&nbsp;", " ")
    return _WHITESPACE.sub(" ", text).strip()


def _child_with_data(parts: List[MessagePart], mime_type: str) -> Optional[LeafPart]:
    for part in parts:
        if isinstance(part, LeafPart) and part.mime_type == mime_type and part.data:
            return part
    return None


def decode_body(part: Optional[MessagePart]) -> str:
    """Decode the readable body of a part tree."""
    if part is None:
        return ""

    if isinstance(part, LeafPart):
        return decode_data(part.data)

    plain = _child_with_data(part.parts, "text/plain")
    if plain is not None:
        return decode_data(plain.data)

    html = _child_with_data(part.parts, "text/html")
    if html is not None:
        return html_to_text(decode_data(html.data))

    for child in part.parts:
        result = decode_body(child)
        if result:
            return result

    return ""


def parse_message(raw: Dict[str, Any]) -> ParsedMessage:
    """Parse a Gmail message resource into a ParsedMessage.

    Args:
        raw: Message resource returned by messages.get(format=full)

    Returns:
        ParsedMessage with the body truncated to MAX_BODY_CHARS
    """
    message_id = str(raw.get("id") or "")
    payload = raw.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    headers = payload.get("headers")

    from_header = get_header(headers, "From")
    body = decode_body(build_part_tree(payload))

    return ParsedMessage(
        message_id=message_id,
        thread_id=str(raw.get("threadId") or message_id),
        sender_display=from_header,
        sender_address=extract_sender_address(from_header),
        subject=get_header(headers, "Subject"),
        body=body[:MAX_BODY_CHARS],
        rfc_message_id=get_header(headers, "Message-ID") or None,
    )
