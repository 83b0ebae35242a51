"""Email data models.

ParsedMessage is the normalized record the poller hands to the channel.
LeafPart / BranchPart model the MIME tree of a Gmail message payload.
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Bodies beyond this length are cut to bound downstream prompt size
MAX_BODY_CHARS = 10_000


class ParsedMessage(BaseModel):
    """One unread message, decoded and normalized.

    Attributes:
        message_id: Gmail message ID (idempotency key)
        thread_id: Gmail thread ID (reply placement)
        sender_display: Raw From header, e.g. "Alice <alice@example.com>"
        sender_address: Bare sender address
        subject: Subject header ("" when missing)
        body: Decoded plain text body, at most MAX_BODY_CHARS long
        rfc_message_id: RFC 5322 Message-ID header, used for reply threading
    """

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(..., description="Gmail message ID")
    thread_id: str = Field(..., description="Gmail thread ID")
    sender_display: str = Field(default="", description="Raw From header value")
    sender_address: str = Field(default="", description="Sender email address")
    subject: str = Field(default="", description="Subject line")
    body: str = Field(default="", max_length=MAX_BODY_CHARS, description="Truncated body")
    rfc_message_id: Optional[str] = Field(
        None,
        description="RFC 5322 Message-ID header value"
    )


class LeafPart(BaseModel):
    """A MIME part carrying (base64url) data, or nothing at all."""

    mime_type: str = ""
    data: Optional[str] = None


class BranchPart(BaseModel):
    """A multipart MIME node with ordered children."""

    mime_type: str = ""
    parts: List["MessagePart"] = Field(default_factory=list)


MessagePart = Union[BranchPart, LeafPart]

BranchPart.model_rebuild()
