"""Sender routing for the email channel.

Every correspondent gets an isolated conversation: a workspace folder on disk
and a session handle in the SessionStore, both selected by the sender key.

Sender key format:
    lower-case address, characters outside [a-z0-9@.] dropped,
    "@" -> "-at-", "." -> "-"

    "John.Doe+test@Example.COM" -> "john-doetest-at-example-com"

Workspace layout:
    <workspaces_root>/email-<sender_key>/
        logs/
        CLAUDE.md      copied from <workspaces_root>/email/CLAUDE.md if present
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from mailbridge.session_store import SessionStore

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9@.]")

WORKSPACE_PREFIX = "email-"
TEMPLATE_FOLDER = "email"
TEMPLATE_FILENAME = "CLAUDE.md"


def compute_sender_key(sender_address: str) -> str:
    """Deterministic, filesystem-safe key for a sender address."""
    key = _UNSAFE_CHARS.sub("", sender_address.lower())
    return key.replace("@", "-at-").replace(".", "-")


@dataclass
class SenderConversation:
    """Routing context for one correspondent.

    Attributes:
        sender_key: Key derived from the sender address
        sender_address: Address the conversation belongs to
        workspace_folder: Folder name under the workspaces root
        workspace_path: Absolute path of the workspace
        session_handle: Last handle returned by the agent, if any
    """

    sender_key: str
    sender_address: str
    workspace_folder: str
    workspace_path: Path
    session_handle: Optional[str] = None

    @property
    def conversation_identity(self) -> str:
        return f"email:{self.sender_address}"

    def __post_init__(self):
        if not self.sender_key:
            raise ValueError("sender_key cannot be empty")


class SenderRouter:
    """Maps sender addresses to isolated conversations.

    Example:
        >>> router = SenderRouter(Path("/srv/groups"), SessionStore())
        >>> conv = router.route("alice@example.com")
        >>> conv.workspace_folder
        'email-alice-at-example-com'
    """

    def __init__(self, workspaces_root: Union[str, Path], session_store: SessionStore):
        self.workspaces_root = Path(workspaces_root)
        self.session_store = session_store

    @property
    def template_path(self) -> Path:
        return self.workspaces_root / TEMPLATE_FOLDER / TEMPLATE_FILENAME

    def route(self, sender_address: str) -> SenderConversation:
        """Resolve (and on first contact create) the sender's conversation.

        Raises:
            ValueError: If the address yields an empty sender key
        """
        sender_key = compute_sender_key(sender_address)
        if not sender_key:
            raise ValueError(f"Cannot derive sender key from address: {sender_address!r}")

        folder = f"{WORKSPACE_PREFIX}{sender_key}"
        workspace = self.workspaces_root / folder

        if not workspace.exists():
            self._create_workspace(workspace)

        return SenderConversation(
            sender_key=sender_key,
            sender_address=sender_address,
            workspace_folder=folder,
            workspace_path=workspace,
            session_handle=self.session_store.get_session_handle(sender_key),
        )

    def _create_workspace(self, workspace: Path) -> None:
        (workspace / "logs").mkdir(parents=True, exist_ok=True)
        logger.info(f"Created workspace {workspace}")

        template = self.template_path
        if not template.is_file():
            return
        try:
            shutil.copyfile(template, workspace / TEMPLATE_FILENAME)
        except OSError as e:
            logger.warning(f"Could not copy workspace template {template}: {e}")

    def save_session_handle(self, conversation: SenderConversation, session_handle: str) -> None:
        self.session_store.save_session_handle(conversation.sender_key, session_handle)
        conversation.session_handle = session_handle
