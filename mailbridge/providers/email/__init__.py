"""Gmail provider for MailBridge.

Architecture:
    CredentialManager (credentials.py) loads OAuth artifacts and builds
    a GmailClient (gmail_client.py) that persists rotated tokens.

    GmailProvider (gmail_provider.py) uses the client to:
        1. ensure_label(): Find or create the watched label
        2. poll(): Fetch unread labeled messages as ParsedMessage records
        3. mark_as_read(): Remove the UNREAD flag after claiming
        4. reply(): Send an in-thread reply

    parser.py decodes raw Gmail messages; models.py holds the data types.
"""

from mailbridge.providers.email.models import (
    MAX_BODY_CHARS,
    BranchPart,
    LeafPart,
    MessagePart,
    ParsedMessage,
)
from mailbridge.providers.email.gmail_client import (
    GmailAPIError,
    GmailClient,
    TokenRefreshError,
    create_reply_message,
)
from mailbridge.providers.email.credentials import (
    DISABLED,
    CredentialManager,
    CredentialState,
)
from mailbridge.providers.email.gmail_provider import (
    GmailProvider,
    normalize_reply_subject,
)
from mailbridge.providers.email.parser import parse_message

__all__ = [
    "MAX_BODY_CHARS",
    "BranchPart",
    "LeafPart",
    "MessagePart",
    "ParsedMessage",
    "GmailAPIError",
    "GmailClient",
    "TokenRefreshError",
    "create_reply_message",
    "DISABLED",
    "CredentialManager",
    "CredentialState",
    "GmailProvider",
    "normalize_reply_subject",
    "parse_message",
]
