"""Tests for sender keys, workspaces and session handles."""

import pytest

from mailbridge.session_router import SenderRouter, compute_sender_key
from mailbridge.session_store import SessionStore


class TestSenderKey:

    def test_deterministic(self):
        first = compute_sender_key("John.Doe+test@Example.COM")
        second = compute_sender_key("John.Doe+test@Example.COM")
        assert first == second == "john-doetest-at-example-com"

    def test_distinct_senders_distinct_keys(self):
        assert compute_sender_key("John.Doe+test@Example.COM") != compute_sender_key("jane@example.com")

    def test_key_is_filesystem_safe(self):
        key = compute_sender_key("../../etc/passwd <x@y.z>")
        assert "/" not in key
        assert "." not in key
        assert "@" not in key


class TestSenderRouter:

    def _router(self, tmp_path):
        store = SessionStore(tmp_path / "db.sqlite")
        return SenderRouter(tmp_path / "groups", store)

    def test_first_contact_creates_workspace(self, tmp_path):
        router = self._router(tmp_path)

        conv = router.route("alice@example.com")

        assert conv.sender_key == "alice-at-example-com"
        assert conv.workspace_folder == "email-alice-at-example-com"
        assert (conv.workspace_path / "logs").is_dir()
        assert conv.session_handle is None
        assert conv.conversation_identity == "email:alice@example.com"

    def test_template_copied_on_first_contact(self, tmp_path):
        template_dir = tmp_path / "groups" / "email"
        template_dir.mkdir(parents=True)
        (template_dir / "CLAUDE.md").write_text("# Email assistant\n")
        router = self._router(tmp_path)

        conv = router.route("alice@example.com")

        assert (conv.workspace_path / "CLAUDE.md").read_text() == "# Email assistant\n"

    def test_existing_workspace_left_untouched(self, tmp_path):
        router = self._router(tmp_path)
        conv = router.route("alice@example.com")
        (conv.workspace_path / "CLAUDE.md").write_text("customized")

        template_dir = tmp_path / "groups" / "email"
        template_dir.mkdir(parents=True)
        (template_dir / "CLAUDE.md").write_text("template")

        again = router.route("alice@example.com")

        assert again.workspace_path == conv.workspace_path
        assert (again.workspace_path / "CLAUDE.md").read_text() == "customized"

    def test_session_handle_persisted_between_routes(self, tmp_path):
        router = self._router(tmp_path)
        conv = router.route("alice@example.com")

        router.save_session_handle(conv, "sess-1")
        router.save_session_handle(conv, "sess-2")

        assert router.route("alice@example.com").session_handle == "sess-2"
        assert router.route("bob@example.com").session_handle is None
        history = router.session_store.get_history(conv.sender_key)
        assert [h["session_handle"] for h in history] == ["sess-1", "sess-2"]

    def test_empty_key_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            self._router(tmp_path).route("+++")
