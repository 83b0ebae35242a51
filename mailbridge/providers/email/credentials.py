"""OAuth credential lifecycle for the Gmail channel.

Two artifacts live in the credentials directory:

    gcp-oauth.keys.json   client keys downloaded from Google Cloud Console,
                          either {"installed": {...}} or {"web": {...}}
    credentials.json      stored user credentials (access_token,
                          refresh_token, expiry_date, scope, token_type)

If either artifact is missing the channel is disabled rather than failing
startup. Refreshed tokens are merged into credentials.json and written back
atomically so a crash mid-write never leaves a truncated file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from mailbridge.providers.email.gmail_client import GmailClient

logger = logging.getLogger(__name__)

KEYS_FILENAME = "gcp-oauth.keys.json"
CREDENTIALS_FILENAME = "credentials.json"


class CredentialStatus(str, Enum):
    DISABLED = "disabled"


# Returned by CredentialManager.load() when the channel cannot run
DISABLED = CredentialStatus.DISABLED


@dataclass
class ClientKeys:
    """OAuth client identity parsed from the keys artifact."""

    client_id: str
    client_secret: str
    redirect_uri: Optional[str] = None


@dataclass
class CredentialState:
    """Access/refresh token pair plus expiry.

    `extra` keeps every other field of credentials.json so a rewrite never
    drops data the refresh did not touch.
    """

    access_token: Optional[str]
    refresh_token: Optional[str]
    expiry_date: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialState":
        known = {"access_token", "refresh_token", "expiry_date"}
        expiry = data.get("expiry_date")
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expiry_date=int(expiry) if expiry is not None else None,
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["access_token"] = self.access_token
        data["refresh_token"] = self.refresh_token
        if self.expiry_date is not None:
            data["expiry_date"] = self.expiry_date
        return data


def parse_client_keys(keys: Dict[str, Any]) -> Optional[ClientKeys]:
    """Extract client keys from an installed-app or web-app keys document."""
    config = keys.get("installed") or keys.get("web")
    if not config:
        return None

    client_id = config.get("client_id")
    client_secret = config.get("client_secret")
    if not client_id or not client_secret:
        return None

    redirect_uris = config.get("redirect_uris") or []
    return ClientKeys(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uris[0] if redirect_uris else None,
    )


@contextmanager
def _atomic_write(path: Path) -> Iterator[Any]:
    """Write to a temp file in the same directory, then rename over `path`."""
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yield fh
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class CredentialManager:
    """Owns the OAuth client lifecycle for one credentials directory.

    Example:
        >>> manager = CredentialManager(Path("~/.gmail-mcp").expanduser())
        >>> client = manager.build_client()
        >>> if client is None:
        ...     print("email channel disabled")
    """

    def __init__(self, credentials_dir: Union[str, Path]):
        self.credentials_dir = Path(credentials_dir)
        self.keys_path = self.credentials_dir / KEYS_FILENAME
        self.credentials_path = self.credentials_dir / CREDENTIALS_FILENAME
        self.client_keys: Optional[ClientKeys] = None
        self.state: Optional[CredentialState] = None
        self._disabled_logged = False

    def _disable(self, message: str, level: int = logging.WARNING) -> CredentialStatus:
        if not self._disabled_logged:
            logger.log(
                level,
                f"{message} (keys={self.keys_path}, credentials={self.credentials_path}); "
                f"email channel disabled"
            )
            self._disabled_logged = True
        return DISABLED

    def load(self) -> Union[CredentialState, CredentialStatus]:
        """Load client keys and stored credentials.

        Returns:
            CredentialState, or DISABLED when an artifact is missing or unusable
        """
        if not self.keys_path.exists() or not self.credentials_path.exists():
            return self._disable("Gmail OAuth files not found")

        try:
            keys = json.loads(self.keys_path.read_text(encoding="utf-8"))
            creds = json.loads(self.credentials_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            return self._disable(f"Gmail OAuth files unreadable: {e}", logging.ERROR)

        client_keys = parse_client_keys(keys)
        if client_keys is None:
            return self._disable(
                f"Invalid {KEYS_FILENAME}: no installed or web key", logging.ERROR
            )

        self.client_keys = client_keys
        self.state = CredentialState.from_dict(creds)
        logger.debug(f"Loaded Gmail credentials from {self.credentials_path}")
        return self.state

    def build_client(self) -> Optional[GmailClient]:
        """Create a GmailClient wired to persist rotated tokens, or None if disabled."""
        state = self.state if self.state is not None else self.load()
        if state is DISABLED or self.client_keys is None:
            return None

        return GmailClient(
            client_id=self.client_keys.client_id,
            client_secret=self.client_keys.client_secret,
            refresh_token=state.refresh_token or "",
            access_token=state.access_token,
            token_expiry_ms=state.expiry_date,
            on_token_rotated=self.on_token_rotated,
        )

    def on_token_rotated(self, new_tokens: Dict[str, Any]) -> None:
        """Merge rotated token fields into credentials.json and write it back.

        Fields absent from `new_tokens` keep their on-disk values.
        """
        try:
            existing = json.loads(self.credentials_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(
                f"Could not read {self.credentials_path} before merge, rewriting from memory"
            )
            existing = self.state.to_dict() if self.state else {}

        merged = {**existing, **{k: v for k, v in new_tokens.items() if v is not None}}
        self.state = CredentialState.from_dict(merged)

        # The client already holds the new token; a failed save must not fail its request
        try:
            with _atomic_write(self.credentials_path) as fh:
                json.dump(merged, fh, indent=2)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist rotated Gmail tokens to {self.credentials_path}: {e}")
            return

        logger.debug("Gmail OAuth tokens refreshed and saved")
