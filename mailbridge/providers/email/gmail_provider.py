"""Gmail Provider Implementation.

This module wraps GmailClient with the mailbox operations the email channel
needs.

Features:
- Label lookup/creation, cached after the first success
- Poll unread messages under a label, one bounded page per cycle
- Mark messages as read
- Send in-thread replies with In-Reply-To and References headers

Example:
    provider = GmailProvider(client)

    label_id = provider.ensure_label("agent")
    for msg in provider.poll("agent"):
        print(f"{msg.sender_address}: {msg.subject}")

    provider.reply(
        thread_id=msg.thread_id,
        to_address=msg.sender_address,
        subject=msg.subject,
        body="Thank you for your question...",
        original_message_id=msg.rfc_message_id,
    )
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from mailbridge.providers.email.gmail_client import (
    GmailAPIError,
    GmailClient,
    TokenRefreshError,
    create_reply_message,
)
from mailbridge.providers.email.models import ParsedMessage
from mailbridge.providers.email.parser import parse_message

logger = logging.getLogger(__name__)

# Unbounded backlogs are drained across cycles
POLL_PAGE_SIZE = 10

REPLY_PREFIX = "Re: "


def normalize_reply_subject(subject: str) -> str:
    """Prefix "Re: " unless the subject already starts with "Re:".

    The check is a case-sensitive exact-prefix match.
    """
    if subject.startswith(REPLY_PREFIX.rstrip()):
        return subject
    return f"{REPLY_PREFIX}{subject}"


def build_unread_query(label_name: str) -> str:
    return f"label:{label_name} is:unread"


class GmailProvider:
    """Mailbox operations on top of GmailClient.

    Attributes:
        client: GmailClient instance for API operations
        email_address: Optional From address for replies
    """

    def __init__(self, client: GmailClient, email_address: Optional[str] = None):
        self.client = client
        self.email_address = email_address
        self._label_ids: Dict[str, str] = {}

    def validate_credentials(self) -> Tuple[bool, Optional[str]]:
        """Validate credentials by fetching the user profile.

        Returns:
            Tuple of (success, error_message)
        """
        try:
            profile = self.client.get_profile()
        except TokenRefreshError as e:
            return False, f"Token refresh failed: {e}"
        except GmailAPIError as e:
            return False, f"API error: {e}"

        logger.info(f"Credentials validated for {profile.get('emailAddress')}")
        return True, None

    def ensure_label(self, name: str) -> str:
        """Return the id of label `name`, creating it if absent.

        The id is cached per provider, so repeated calls hit the API once.

        Raises:
            GmailAPIError: If listing or creating labels fails
        """
        cached = self._label_ids.get(name)
        if cached:
            return cached

        for label in self.client.list_labels():
            if label.get("name") == name:
                self._label_ids[name] = label["id"]
                return label["id"]

        created = self.client.create_label(name)
        logger.info(f"Created Gmail label: {name}")
        self._label_ids[name] = created["id"]
        return created["id"]

    def poll(self, label_name: str) -> List[ParsedMessage]:
        """Fetch unread messages under `label_name`.

        A message that cannot be fetched or parsed is logged and skipped.

        Raises:
            GmailAPIError: If listing messages fails
            TokenRefreshError: If authentication fails
        """
        query = build_unread_query(label_name)
        stubs = self.client.list_messages(query=query, max_results=POLL_PAGE_SIZE)

        if stubs:
            logger.debug(f"Found {len(stubs)} messages matching query: {query}")

        messages: List[ParsedMessage] = []
        for stub in stubs:
            msg_id = stub.get("id")
            if not msg_id:
                continue
            try:
                raw = self.client.get_message(msg_id)
                # messages.list knows the thread even when messages.get omits it
                if not raw.get("threadId") and stub.get("threadId"):
                    raw = {**raw, "threadId": stub["threadId"]}
                messages.append(parse_message(raw))
            except TokenRefreshError:
                raise
            except GmailAPIError as e:
                logger.error(f"Failed to fetch message {msg_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to parse message {msg_id}: {e}", exc_info=True)
                continue

        return messages

    def mark_as_read(self, message_id: str) -> None:
        """Remove the UNREAD label from a message.

        Raises:
            GmailAPIError: If modify fails
        """
        self.client.modify_message(
            message_id=message_id,
            remove_labels=["UNREAD"]
        )
        logger.debug(f"Marked message as read: {message_id}")

    def reply(
        self,
        thread_id: str,
        to_address: str,
        subject: str,
        body: str,
        original_message_id: Optional[str] = None,
    ) -> str:
        """Send `body` as an in-thread reply.

        Args:
            thread_id: Gmail thread to place the reply in
            to_address: Recipient address
            subject: Subject of the message being answered
            body: Reply text
            original_message_id: RFC Message-ID being answered, if known

        Returns:
            Gmail message ID of the sent reply

        Raises:
            GmailAPIError: If the send fails
        """
        raw_message = create_reply_message(
            to_address=to_address,
            subject=normalize_reply_subject(subject),
            text_body=body,
            in_reply_to=original_message_id,
            references=original_message_id,
            from_address=self.email_address,
        )

        message_id, sent_thread_id = self.client.send_message(raw_message, thread_id=thread_id)

        logger.info(
            f"Reply sent: message_id={message_id}, thread_id={sent_thread_id}"
        )
        return message_id
