"""In-memory conversation storage for prompt context."""

import uuid
from datetime import datetime, timezone

from oceochat.data.schema import Message, PriorTurn


class ConversationStore:
    """In-memory conversation storage. Messages live only as long as the process."""

    def __init__(self, max_messages: int = 200) -> None:
        self._conversations: dict[str, list[Message]] = {}
        self._max_messages = max_messages

    def get_or_create(self, conversation_id: str | None = None) -> str:
        """Get an existing conversation or create one. Returns its id."""
        if conversation_id and conversation_id in self._conversations:
            return conversation_id
        new_id = conversation_id or str(uuid.uuid4())
        self._conversations[new_id] = []
        return new_id

    def add_message(self, conversation_id: str, role: str, content: str) -> Message:
        messages = self._conversations.setdefault(conversation_id, [])
        msg = Message(
            id=str(uuid.uuid4()),
            role=role,
            content=content,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        messages.append(msg)
        if len(messages) > self._max_messages:
            del messages[: len(messages) - self._max_messages]
        return msg

    def get_history(self, conversation_id: str) -> list[Message]:
        return list(self._conversations.get(conversation_id, []))

    def get_recent_turns(self, conversation_id: str, limit: int) -> tuple[PriorTurn, ...]:
        """The last ``limit`` messages as prompt turns, oldest first."""
        if limit <= 0:
            return ()
        messages = self._conversations.get(conversation_id, [])[-limit:]
        return tuple(PriorTurn(role=m.role, content=m.content) for m in messages)

    def exists(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations
