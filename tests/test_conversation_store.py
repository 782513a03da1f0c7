"""
Tests for the RAM-only conversation store, session registry and config validation.

Run with: python -m pytest tests/test_conversation_store.py -v
"""

import threading

import pytest

from orvion.core.config import Config
from orvion.core.errors import ConfigurationError
from orvion.core.state import SessionRegistry
from orvion.memory.conversation_store import ConversationStore, extract_entities, format_context


# ============================================================================
# CONVERSATION STORE
# ============================================================================

class TestConversationStore:
    def test_messages_in_order(self):
        store = ConversationStore(max_messages=10)
        store.add_message("u1", "user", "who is Alan Turing")
        store.add_message("u1", "assistant", "A mathematician.")
        ctx = store.get_context("u1")
        assert [m["role"] for m in ctx["messages"]] == ["user", "assistant"]
        assert ctx["message_count"] == 2
        assert ctx["context_string"] == f"User: who is Alan Turing\n{Config.ASSISTANT_NAME}: A mathematician."

    def test_bounded_per_user(self):
        store = ConversationStore(max_messages=3)
        for i in range(5):
            store.add_message("u1", "user", f"m{i}")
        ctx = store.get_context("u1")
        assert [m["content"] for m in ctx["messages"]] == ["m2", "m3", "m4"]
        assert store.message_count("u1") == 3

    def test_limit(self):
        store = ConversationStore(max_messages=10)
        for i in range(6):
            store.add_message("u1", "user", f"m{i}")
        assert [m["content"] for m in store.get_context("u1", limit=2)["messages"]] == ["m4", "m5"]
        assert store.get_context("u1", limit=0)["messages"] == []

    def test_users_isolated(self):
        store = ConversationStore()
        store.add_message("u1", "user", "hello there")
        assert store.get_context("u2")["messages"] == []
        assert store.get_context("u2")["context_string"] == ""

    def test_entities_merged(self):
        store = ConversationStore()
        store.add_message("u1", "user", "q1", {"entities": {"people": ["Alan Turing"], "topics": ["computing"]}})
        store.add_message("u1", "user", "q2", {"entities": {"people": ["Alan Turing", "Ada Lovelace"]}})
        entities = store.get_context("u1")["entities"]
        assert entities["people"] == ["Alan Turing", "Ada Lovelace"]
        assert entities["topics"] == ["computing"]
        assert entities["places"] == []

    def test_update_context(self):
        store = ConversationStore()
        store.update_context("u1", {"last_intent": "get-time"})
        merged = store.update_context("u1", {"last_slots": {}})
        assert merged == {"last_intent": "get-time", "last_slots": {}}
        assert store.get_context("u1")["context"]["last_intent"] == "get-time"

    def test_clear(self):
        store = ConversationStore()
        store.add_message("u1", "user", "hello")
        store.update_context("u1", {"x": 1})
        store.clear("u1")
        ctx = store.get_context("u1")
        assert ctx["message_count"] == 0
        assert ctx["context"] == {}

    def test_concurrent_appends(self):
        store = ConversationStore(max_messages=1000)

        def writer():
            for i in range(100):
                store.add_message("u1", "user", f"m{i}")

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.message_count("u1") == 400


class TestHelpers:
    def test_format_context_truncates(self):
        msg = {"role": "assistant", "content": "x" * 250, "timestamp": 0.0, "metadata": {}}
        line = format_context([msg], "Orvion")
        assert line == "Orvion: " + "x" * 200 + "..."

    def test_extract_entities_tolerates_missing_metadata(self):
        msg = {"role": "user", "content": "hi", "timestamp": 0.0, "metadata": {}}
        assert extract_entities([msg]) == {"people": [], "places": [], "topics": [], "dates": []}


# ============================================================================
# SESSIONS
# ============================================================================

class TestSessionRegistry:
    def test_open_and_reuse(self):
        registry = SessionRegistry()
        session = registry.open_session("u1", "Sam")
        assert session.id.startswith("sess_")
        assert registry.open_session("u1", session_id=session.id) is session
        assert len(registry) == 1

    def test_multiple_sessions_per_user(self):
        registry = SessionRegistry()
        registry.open_session("u1")
        registry.open_session("u1")
        registry.open_session("u2")
        assert len(registry.sessions_for("u1")) == 2

    def test_end_session(self):
        registry = SessionRegistry()
        session = registry.open_session("u1")
        assert registry.end_session(session.id) is session
        assert registry.get(session.id) is None

    def test_expire_idle(self):
        registry = SessionRegistry()
        old = registry.open_session("u1")
        fresh = registry.open_session("u2")
        fresh.last_activity = old.last_activity + 100
        assert registry.expire_idle(50, now=old.last_activity + 120) == [old.id]
        assert registry.get(fresh.id) is fresh


# ============================================================================
# CONFIG
# ============================================================================

class TestConfigValidate:
    @pytest.fixture(autouse=True)
    def remote_on(self, monkeypatch):
        monkeypatch.setattr(Config, "REASONING_MODE", "ollama")
        monkeypatch.setattr(Config, "REASONING_URL", "http://127.0.0.1:11434")
        monkeypatch.setattr(Config, "REASONING_API_KEY", "")
        monkeypatch.setattr(Config, "REASONING_REQUIRE_API_KEY", False)

    def test_defaults_valid(self):
        Config.validate()

    def test_missing_url(self, monkeypatch):
        monkeypatch.setattr(Config, "REASONING_URL", "  ")
        with pytest.raises(ConfigurationError, match="REASONING_URL"):
            Config.validate()

    def test_required_key_missing(self, monkeypatch):
        monkeypatch.setattr(Config, "REASONING_REQUIRE_API_KEY", True)
        with pytest.raises(ConfigurationError, match="API_KEY"):
            Config.validate()

    def test_required_key_present(self, monkeypatch):
        monkeypatch.setattr(Config, "REASONING_REQUIRE_API_KEY", True)
        monkeypatch.setattr(Config, "REASONING_API_KEY", "secret")
        Config.validate()

    def test_off_mode_skips_checks(self, monkeypatch):
        monkeypatch.setattr(Config, "REASONING_MODE", "off")
        monkeypatch.setattr(Config, "REASONING_URL", "")
        assert not Config.remote_enabled()
        Config.validate()
