"""Gmail API Client with OAuth 2.0 Token Management.

This module provides a low-level client for the Gmail REST API with automatic
token refresh, error handling, and retry logic.

Features:
- OAuth 2.0 authentication with automatic token refresh
- Rotation listener so refreshed tokens can be persisted
- Exponential backoff retry for transient errors
- Rate limit handling
- Proper error categorization (auth, network, quota)

Design:
    GmailClient encapsulates all Gmail API calls and token management.
    GmailProvider uses this client to poll, label, mark read and reply.
"""

from __future__ import annotations

import base64
import logging
import time
from datetime import timedelta, timezone
from email.mime.text import MIMEText
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from mailbridge.core.time import from_epoch_ms, utc_now, utc_now_ms

logger = logging.getLogger(__name__)

# Called with the fields of every successful refresh response
TokenRotationListener = Callable[[Dict[str, Any]], None]


class TokenRefreshError(Exception):
    """Raised when OAuth token refresh fails."""
    pass


class GmailAPIError(Exception):
    """Raised when Gmail API call fails."""
    def __init__(self, message: str, error_code: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code


DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(value: Optional[str], default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    """Seconds to wait for a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return default
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparseable Retry-After header: {value!r}")
        return default
    if retry_at is None:
        return default
    if retry_at.tzinfo is None:
        # HTTP-dates are always GMT
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0, int((retry_at - utc_now()).total_seconds()))


class GmailClient:
    """Low-level client for Gmail API with token management.

    Attributes:
        client_id: OAuth 2.0 Client ID from Google Cloud Console
        client_secret: OAuth 2.0 Client Secret from Google Cloud Console
        refresh_token: OAuth 2.0 Refresh Token (obtained during authorization)
        access_token: Current access token (refreshed automatically)
        token_expiry_ms: When the current access token expires (epoch ms)
    """

    # Gmail API base URL
    GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"

    # OAuth 2.0 token endpoint
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"

    # Refresh this long before the provider-reported expiry
    EXPIRY_SKEW = timedelta(minutes=5)

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: Optional[str] = None,
        token_expiry_ms: Optional[int] = None,
        on_token_rotated: Optional[TokenRotationListener] = None,
    ):
        """Initialize Gmail client.

        Args:
            client_id: OAuth 2.0 Client ID
            client_secret: OAuth 2.0 Client Secret
            refresh_token: OAuth 2.0 Refresh Token
            access_token: Optional cached access token
            token_expiry_ms: Expiry of the cached access token; an access token
                without expiry is treated as expired
            on_token_rotated: Invoked synchronously after each refresh
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.access_token = access_token
        self.token_expiry_ms = token_expiry_ms
        self.on_token_rotated = on_token_rotated

    def _token_expired(self) -> bool:
        if not self.access_token or not self.token_expiry_ms:
            return True
        expiry = from_epoch_ms(self.token_expiry_ms)
        return utc_now() >= expiry - self.EXPIRY_SKEW

    def _ensure_token(self) -> None:
        """Ensure we have a valid access token, refreshing if needed.

        Raises:
            TokenRefreshError: If token refresh fails
        """
        if self._token_expired():
            logger.info("Access token expired or missing, refreshing...")
            self._refresh_access_token()

    def _refresh_access_token(self) -> None:
        """Refresh access token using refresh token.

        Raises:
            TokenRefreshError: If refresh fails
        """
        if not self.refresh_token:
            raise TokenRefreshError("No refresh token available")

        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token"
        }

        try:
            response = requests.post(
                self.TOKEN_ENDPOINT,
                data=payload,
                timeout=10
            )
        except requests.exceptions.RequestException as e:
            raise TokenRefreshError(f"Network error during token refresh: {e}") from e

        if response.status_code != 200:
            try:
                error_data = response.json() if response.text else {}
            except ValueError:
                error_data = {}
            error_msg = error_data.get("error_description", response.text)
            raise TokenRefreshError(
                f"Token refresh failed: {error_msg} (status={response.status_code})"
            )

        data = response.json()
        if "access_token" not in data:
            raise TokenRefreshError("Token refresh response missing access_token")

        self.access_token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))  # Default 1 hour
        self.token_expiry_ms = utc_now_ms() + expires_in * 1000

        # Google only returns a refresh_token when it rotates it
        if data.get("refresh_token"):
            self.refresh_token = data["refresh_token"]

        logger.info(f"Access token refreshed, expires at {from_epoch_ms(self.token_expiry_ms)}")

        if self.on_token_rotated:
            rotated = {
                key: value for key, value in data.items()
                if key not in ("expires_in",)
            }
            rotated["expiry_date"] = self.token_expiry_ms
            self.on_token_rotated(rotated)

    def _make_api_call(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        retry_transient: bool = True
    ) -> Tuple[int, Dict[str, Any]]:
        """Make Gmail API call with automatic retry and token refresh.

        Args:
            method: HTTP method (GET, POST, DELETE, etc.)
            endpoint: API endpoint (relative to GMAIL_API_BASE)
            params: Query parameters
            json_data: JSON body data
            max_retries: Maximum number of retries for transient errors
            retry_transient: Retry timeouts, network errors and 5xx. Must be False
                for non-idempotent calls; 401 and 429 are still retried since the
                request was not accepted

        Returns:
            Tuple of (status_code, response_json)

        Raises:
            TokenRefreshError: If the access token cannot be refreshed
            GmailAPIError: If API call fails after retries
        """
        self._ensure_token()

        url = f"{self.GMAIL_API_BASE}/{endpoint}"
        refreshed_after_401 = False

        for attempt in range(max_retries):
            headers = {
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json"
            }
            try:
                response = requests.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json_data,
                    timeout=30
                )
            except requests.exceptions.Timeout:
                if retry_transient and attempt < max_retries - 1:
                    logger.warning(
                        f"Request timeout, retrying... (attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(2 ** attempt)
                    continue
                raise GmailAPIError(
                    "Request timed out after retries",
                    "timeout"
                )
            except requests.exceptions.RequestException as e:
                if retry_transient and attempt < max_retries - 1:
                    logger.warning(
                        f"Network error, retrying... (attempt {attempt + 1}/{max_retries}): {e}"
                    )
                    time.sleep(2 ** attempt)
                    continue
                raise GmailAPIError(
                    f"Network error: {e}",
                    "network_error"
                )

            # Token may have been revoked early; refresh once and retry
            if response.status_code == 401 and not refreshed_after_401:
                logger.warning("Got 401 Unauthorized, refreshing token...")
                self._refresh_access_token()
                refreshed_after_401 = True
                continue

            if response.status_code == 429:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                logger.warning(f"Rate limited, waiting {retry_after}s...")
                time.sleep(retry_after)
                continue

            if retry_transient and 500 <= response.status_code < 600:
                wait_time = 2 ** attempt  # Exponential backoff: 1s, 2s, 4s
                logger.warning(
                    f"Server error {response.status_code}, "
                    f"retrying in {wait_time}s... (attempt {attempt + 1}/{max_retries})"
                )
                time.sleep(wait_time)
                continue

            try:
                response_json = response.json() if response.text else {}
            except ValueError:
                response_json = {}
            return response.status_code, response_json

        raise GmailAPIError(
            f"API call failed after {max_retries} retries",
            "max_retries_exceeded"
        )

    @staticmethod
    def _error_message(data: Dict[str, Any]) -> str:
        error = data.get("error", {})
        if isinstance(error, dict):
            return error.get("message", "Unknown error")
        return str(error) or "Unknown error"

    def get_profile(self) -> Dict[str, Any]:
        """Fetch the authenticated user's profile (email address, counters).

        Raises:
            GmailAPIError: If API call fails
        """
        status, data = self._make_api_call("GET", "profile")
        if status != 200:
            raise GmailAPIError(
                f"get_profile failed: {self._error_message(data)}",
                "profile_failed",
                status
            )
        return data

    def list_messages(
        self,
        query: str = "is:unread",
        max_results: int = 10,
    ) -> List[Dict[str, str]]:
        """List message stubs matching query.

        Only the first page is requested; remaining matches are picked up
        by later poll cycles.

        Args:
            query: Gmail search query
            max_results: Maximum number of messages to return

        Returns:
            List of {"id": ..., "threadId": ...} dictionaries

        Raises:
            GmailAPIError: If API call fails
        """
        params = {
            "q": query,
            "maxResults": max_results
        }

        status, data = self._make_api_call("GET", "messages", params=params)

        if status != 200:
            raise GmailAPIError(
                f"list_messages failed: {self._error_message(data)}",
                "list_failed",
                status
            )

        return data.get("messages", [])

    def get_message(self, message_id: str) -> Dict[str, Any]:
        """Get full message details including headers and body.

        Raises:
            GmailAPIError: If API call fails
        """
        params = {"format": "full"}
        status, data = self._make_api_call(
            "GET",
            f"messages/{message_id}",
            params=params
        )

        if status != 200:
            raise GmailAPIError(
                f"get_message failed: {self._error_message(data)}",
                "get_failed",
                status
            )

        return data

    def send_message(self, raw_message: str, thread_id: Optional[str] = None) -> Tuple[str, str]:
        """Send an email message.

        Args:
            raw_message: RFC 822 formatted email message
            thread_id: Gmail thread the message belongs to

        Returns:
            Tuple of (message_id, thread_id)

        Raises:
            GmailAPIError: If send fails
        """
        # Gmail requires base64url transport encoding
        encoded_message = base64.urlsafe_b64encode(
            raw_message.encode("utf-8")
        ).decode("ascii")

        json_data: Dict[str, Any] = {
            "raw": encoded_message
        }
        if thread_id:
            json_data["threadId"] = thread_id

        # A send the server may have accepted is never repeated
        status, data = self._make_api_call(
            "POST",
            "messages/send",
            json_data=json_data,
            retry_transient=False
        )

        if status != 200:
            raise GmailAPIError(
                f"send_message failed: {self._error_message(data)}",
                "send_failed",
                status
            )

        return data.get("id"), data.get("threadId")

    def modify_message(
        self,
        message_id: str,
        add_labels: Optional[List[str]] = None,
        remove_labels: Optional[List[str]] = None
    ) -> bool:
        """Modify message labels (e.g., mark as read).

        Raises:
            GmailAPIError: If modify fails
        """
        json_data = {}
        if add_labels:
            json_data["addLabelIds"] = add_labels
        if remove_labels:
            json_data["removeLabelIds"] = remove_labels

        status, data = self._make_api_call(
            "POST",
            f"messages/{message_id}/modify",
            json_data=json_data
        )

        if status != 200:
            raise GmailAPIError(
                f"modify_message failed: {self._error_message(data)}",
                "modify_failed",
                status
            )

        return True

    def list_labels(self) -> List[Dict[str, Any]]:
        """List all labels of the mailbox.

        Raises:
            GmailAPIError: If API call fails
        """
        status, data = self._make_api_call("GET", "labels")

        if status != 200:
            raise GmailAPIError(
                f"list_labels failed: {self._error_message(data)}",
                "labels_failed",
                status
            )

        return data.get("labels", [])

    def create_label(self, name: str) -> Dict[str, Any]:
        """Create a label shown in the label list.

        Raises:
            GmailAPIError: If API call fails
        """
        json_data = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        status, data = self._make_api_call("POST", "labels", json_data=json_data)

        if status != 200:
            raise GmailAPIError(
                f"create_label failed: {self._error_message(data)}",
                "label_create_failed",
                status
            )

        return data


def create_reply_message(
    to_address: str,
    subject: str,
    text_body: str,
    in_reply_to: Optional[str] = None,
    references: Optional[str] = None,
    from_address: Optional[str] = None,
) -> str:
    """Create an RFC 822 plain text reply.

    Args:
        to_address: Recipient email address
        subject: Email subject (already normalized by the caller)
        text_body: Plain text body
        in_reply_to: In-Reply-To header (for threading)
        references: References header (for threading)
        from_address: Sender address; Gmail fills it in when omitted

    Returns:
        RFC 822 formatted message string
    """
    msg = MIMEText(text_body or "", "plain", "utf-8")
    if from_address:
        msg["From"] = from_address
    msg["To"] = to_address
    msg["Subject"] = subject

    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
    if references:
        msg["References"] = references

    return msg.as_string()
