import pytest

from services.conversation_service import ConversationService
from services.errors import InvalidInput, MessageNotFound
from tests.conftest import FakeMessageStore, make_message


def conversation(size, conversation_id="chat1"):
    return [make_message(f"m{i}", conversation_id, f"message {i}", minutes=i) for i in range(size)]


class TestConversationContext:
    async def test_short_conversation_returns_everything_in_order(self):
        service = ConversationService(FakeMessageStore(conversation(3)))

        context = await service.get_conversation_context("m2", "chat1", window_size=5)

        assert [m.message_id for m in context] == ["m0", "m1", "m2"]

    async def test_window_stops_at_target(self):
        service = ConversationService(FakeMessageStore(conversation(10)))

        context = await service.get_conversation_context("m4", "chat1", window_size=1)

        assert [m.message_id for m in context] == ["m2", "m3", "m4"]

    async def test_window_holds_two_sides_worth_of_history(self):
        service = ConversationService(FakeMessageStore(conversation(20)))

        context = await service.get_conversation_context("m19", "chat1", window_size=2)

        assert [m.message_id for m in context] == ["m15", "m16", "m17", "m18", "m19"]

    async def test_zero_window_returns_only_target(self):
        service = ConversationService(FakeMessageStore(conversation(4)))

        context = await service.get_conversation_context("m1", "chat1", window_size=0)

        assert [m.message_id for m in context] == ["m1"]

    async def test_equal_timestamps_keep_insertion_order(self):
        messages = [
            make_message("first", minutes=5),
            make_message("second", minutes=5),
            make_message("third", minutes=5),
        ]
        service = ConversationService(FakeMessageStore(messages))

        context = await service.get_conversation_context("second", "chat1", window_size=5)

        assert [m.message_id for m in context] == ["first", "second"]

    @pytest.mark.parametrize(
        "target, window_size, expected",
        [
            ("first", 0, ["first"]),
            ("first", 3, ["first"]),
            ("second", 0, ["second"]),
            ("third", 1, ["first", "second", "third"]),
        ],
    )
    async def test_tied_timestamps_end_at_target(self, target, window_size, expected):
        messages = [make_message(m, minutes=5) for m in ("first", "second", "third")]
        service = ConversationService(FakeMessageStore(messages))

        context = await service.get_conversation_context(target, "chat1", window_size=window_size)

        assert [m.message_id for m in context] == expected
        assert context[-1].message_id == target

    async def test_whitespace_only_message_does_not_break_context(self):
        messages = conversation(2) + [make_message("blank", content="   ", minutes=2)]
        service = ConversationService(FakeMessageStore(messages))

        context = await service.get_conversation_context("blank", "chat1", window_size=1)

        assert [m.message_id for m in context] == ["m0", "m1", "blank"]

    async def test_ignores_other_conversations(self):
        messages = conversation(3) + conversation(3, conversation_id="chat2")
        service = ConversationService(FakeMessageStore(messages))

        context = await service.get_conversation_context("m2", "chat2", window_size=5)

        assert {m.conversation_id for m in context} == {"chat2"}

    async def test_unknown_message(self):
        service = ConversationService(FakeMessageStore(conversation(3)))

        with pytest.raises(MessageNotFound):
            await service.get_conversation_context("missing", "chat1", window_size=5)

    async def test_message_in_other_conversation_is_not_found(self):
        service = ConversationService(FakeMessageStore(conversation(3)))

        with pytest.raises(MessageNotFound):
            await service.get_conversation_context("m1", "chat9", window_size=5)

    async def test_negative_window(self):
        service = ConversationService(FakeMessageStore(conversation(3)))

        with pytest.raises(InvalidInput):
            await service.get_conversation_context("m1", "chat1", window_size=-1)


class TestGrouping:
    def test_groups_in_first_seen_order(self):
        messages = [
            make_message("1", "chatB", chat_name="Bea"),
            make_message("2", "chatA"),
            make_message("3", "chatB", chat_name="Bea"),
            make_message("4", "chatC"),
        ]

        groups = ConversationService.group_into_conversations(messages, limit=10)

        assert [g.conversation_id for g in groups] == ["chatB", "chatA", "chatC"]
        assert [m.message_id for m in groups[0].messages] == ["1", "3"]
        assert groups[0].display_name == "Bea"
        assert groups[1].display_name == "chatA"

    def test_respects_limit(self):
        messages = [make_message(str(i), f"chat{i}") for i in range(5)]

        groups = ConversationService.group_into_conversations(messages, limit=2)

        assert [g.conversation_id for g in groups] == ["chat0", "chat1"]

    def test_empty_input_and_zero_limit(self):
        assert ConversationService.group_into_conversations([], limit=3) == []
        assert ConversationService.group_into_conversations([make_message("1")], limit=0) == []


async def test_similar_conversations_use_customer_messages(conversation_service):
    groups = await conversation_service.get_similar_conversations(limit=3)

    assert [g.conversation_id for g in groups] == ["chat3", "chat2", "chat1"]
    assert all(not m.is_from_business for g in groups for m in g.messages)


async def test_similar_conversations_exclude_current_chat(conversation_service):
    groups = await conversation_service.get_similar_conversations(limit=3, exclude_conversation_id="chat3")

    assert "chat3" not in [g.conversation_id for g in groups]
