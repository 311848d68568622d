from functools import lru_cache
from typing import Dict, Iterable, List, Optional

from models import ConversationGroup, Message
from services.errors import InvalidInput, MessageNotFound
from services.message_store import MessageStore, get_message_store


class ConversationService:
    """Rebuilds readable conversation threads from the raw message store."""

    def __init__(self, message_store: Optional[MessageStore] = None):
        self.message_store = message_store if message_store is not None else get_message_store()

    async def get_conversation_context(
        self, message_id: str, conversation_id: str, window_size: int = 5
    ) -> List[Message]:
        """
        Messages leading up to (and including) ``message_id``, oldest first.

        Returns at most ``2 * window_size + 1`` messages ending with the target.
        Messages sharing the target's timestamp but stored after it count as
        later and are left out.

        Raises:
            InvalidInput: negative window_size
            MessageNotFound: the message does not exist in the conversation
        """
        if window_size < 0:
            raise InvalidInput(f"window_size must be >= 0, got {window_size}")

        if await self.message_store.get_message(message_id, conversation_id) is None:
            raise MessageNotFound(message_id, conversation_id)

        messages = await self.message_store.get_messages_by_conversation(conversation_id)
        # sorted() ổn định: cùng timestamp thì giữ thứ tự insert
        ordered = sorted(messages, key=lambda m: m.timestamp)
        index = next((i for i, m in enumerate(ordered) if m.message_id == message_id), None)
        if index is None:
            raise MessageNotFound(message_id, conversation_id)
        return ordered[max(0, index - 2 * window_size):index + 1]

    @staticmethod
    def group_into_conversations(messages: Iterable[Message], limit: int) -> List[ConversationGroup]:
        """Partition messages by conversation id, keeping first-seen order, up to ``limit`` groups."""
        if limit <= 0:
            return []

        groups: Dict[str, ConversationGroup] = {}
        for message in messages:
            group = groups.get(message.conversation_id)
            if group is None:
                group = ConversationGroup(
                    conversation_id=message.conversation_id,
                    display_name=message.chat_name or message.conversation_id,
                    messages=[],
                )
                groups[message.conversation_id] = group
            group.messages.append(message)

        return list(groups.values())[:limit]

    async def get_similar_conversations(
        self, limit: int = 3, exclude_conversation_id: Optional[str] = None
    ) -> List[ConversationGroup]:
        """
        Best-effort "similar past conversations": recent customer messages
        grouped by conversation. Not ranked by similarity.
        """
        messages = await self.message_store.get_messages(limit=limit * 10, from_business=False)
        if exclude_conversation_id:
            messages = [m for m in messages if m.conversation_id != exclude_conversation_id]
        return self.group_into_conversations(messages, limit)


@lru_cache(maxsize=1)
def get_conversation_service() -> ConversationService:
    """
    FastAPI dependency factory that returns a singleton ConversationService instance.
    """
    return ConversationService()
