"""Tests for the local transcript store."""

from datetime import UTC, datetime, timedelta

import pytest

from app.models.messages import Message, TextPart, ToolCallPart, ToolCallState
from app.models.session import DEFAULT_SESSION_TITLE
from app.services.transcript_store import TranscriptStore


def assistant(text: str) -> Message:
    return Message(role="assistant", content=text, parts=(TextPart(text=text),))


class TestSessions:
    """Tests for session bookkeeping."""

    def test_add_message_creates_session(self):
        store = TranscriptStore()

        session = store.add_message(Message.user("What is in sprint 3?"))

        assert store.active_session_id == session.id
        assert session.title == "What is in sprint 3?"
        assert len(store.sessions) == 1

    def test_title_is_truncated(self):
        store = TranscriptStore()
        session = store.add_message(Message.user("Please list every open user story in the mobile project"))
        assert session.title == "Please list every open user story in the..."

    def test_new_session_gets_title_from_first_message(self):
        store = TranscriptStore()
        session = store.create_session()
        assert session.title == DEFAULT_SESSION_TITLE

        store.add_message(Message.user("list my projects"))
        store.add_message(assistant("You have 2 projects"))

        assert store.get_session(session.id).title == "list my projects"

    def test_select_unknown_session(self):
        with pytest.raises(KeyError):
            TranscriptStore().select_session("missing")

    def test_delete_active_moves_to_most_recent(self):
        store = TranscriptStore()
        oldest = store.create_session()
        newest = store.create_session()
        active = store.create_session()
        now = datetime.now(UTC)
        oldest.updated_at = now - timedelta(hours=2)
        newest.updated_at = now - timedelta(hours=1)

        store.delete_session(active.id)

        assert store.active_session_id == newest.id
        assert [s.id for s in store.sessions] == [newest.id, oldest.id]

    def test_delete_last_session(self):
        store = TranscriptStore()
        session = store.create_session()
        store.delete_session(session.id)
        assert store.active_session is None

    def test_truncate_and_clear(self):
        store = TranscriptStore()
        for text in ["one", "two", "three"]:
            store.add_message(Message.user(text))

        store.truncate_active_session(1)
        assert [m.content for m in store.active_session.messages] == ["one"]

        store.clear_active_session()
        assert store.active_session.messages == []
        assert store.active_session.title == DEFAULT_SESSION_TITLE

    def test_rename(self):
        store = TranscriptStore()
        session = store.create_session()
        store.rename_session(session.id, "Sprint planning")
        assert store.get_session(session.id).title == "Sprint planning"

    def test_rename_survives_first_message(self):
        store = TranscriptStore()
        session = store.create_session()
        store.rename_session(session.id, "Sprint planning")

        store.add_message(Message.user("what is left in sprint 4?"))

        assert store.get_session(session.id).title == "Sprint planning"

    def test_rename_unknown_session(self):
        with pytest.raises(KeyError):
            TranscriptStore().rename_session("missing", "Sprint planning")


class TestPersistence:
    """Tests for the JSON file backing."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "history" / "sessions.json"
        store = TranscriptStore(path)
        store.add_message(Message.user("list my projects"))
        reply = Message(
            role="assistant",
            content="You have 1 project",
            parts=(
                ToolCallPart(
                    tool_call_id="t1",
                    tool_name="get_projects",
                    state=ToolCallState.OUTPUT_AVAILABLE,
                    output=[{"id": 1}],
                ),
                TextPart(text="You have 1 project"),
            ),
        )
        store.add_message(reply)

        reloaded = TranscriptStore(path)

        assert reloaded.active_session_id == store.active_session_id
        messages = reloaded.active_session.messages
        assert messages[1] == reply
        assert messages[1].tool_calls[0].output == [{"id": 1}]
        assert not path.with_suffix(".json.tmp").exists()

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{not json", encoding="utf-8")

        store = TranscriptStore(path)

        assert store.sessions == []
        assert store.active_session is None
