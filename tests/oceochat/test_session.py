"""Tests for the in-memory conversation store."""

from oceochat.api.session import ConversationStore
from oceochat.data.schema import PriorTurn


class TestConversationStore:
    def test_create_conversation(self):
        store = ConversationStore()
        cid = store.get_or_create()
        assert cid
        assert store.exists(cid)

    def test_get_existing_conversation(self):
        store = ConversationStore()
        cid = store.get_or_create("my-conv")
        store.add_message(cid, "user", "hi")
        assert store.get_or_create("my-conv") == "my-conv"
        assert len(store.get_history("my-conv")) == 1

    def test_message_has_timestamp(self):
        store = ConversationStore()
        msg = store.add_message(store.get_or_create(), "user", "test")
        assert msg.timestamp
        assert msg.id

    def test_recent_turns_oldest_first(self):
        store = ConversationStore()
        cid = store.get_or_create()
        for i in range(5):
            store.add_message(cid, "user" if i % 2 == 0 else "assistant", f"m{i}")

        turns = store.get_recent_turns(cid, 3)
        assert turns == (
            PriorTurn("user", "m2"),
            PriorTurn("assistant", "m3"),
            PriorTurn("user", "m4"),
        )

    def test_recent_turns_zero_limit(self):
        store = ConversationStore()
        cid = store.get_or_create()
        store.add_message(cid, "user", "m")
        assert store.get_recent_turns(cid, 0) == ()

    def test_unknown_conversation_empty(self):
        store = ConversationStore()
        assert store.get_history("nope") == []
        assert store.get_recent_turns("nope", 5) == ()

    def test_history_bounded(self):
        store = ConversationStore(max_messages=3)
        cid = store.get_or_create()
        for i in range(5):
            store.add_message(cid, "user", f"m{i}")
        assert [m.content for m in store.get_history(cid)] == ["m2", "m3", "m4"]
