"""Tests for conversation persistence."""

import json

import pytest

from turnwise.conversation import Conversation, FileConversationStorage, InMemoryConversationStorage
from turnwise.errors import MessageConversionError
from turnwise.models.messages import (
    RoleMessage,
    SystemMessage,
    ToolCall,
    ToolCallMessage,
    ToolResponse,
    ToolResponseMessage,
)


@pytest.fixture
def conversation():
    """Conversation covering every message variant over two turns."""
    conversation = Conversation(conversation_id="conv-1")
    conversation.append_message(SystemMessage(content="be brief"))
    conversation.append_message(RoleMessage.user("what time is it?"))
    conversation.append_message(ToolCallMessage(tool_calls=[ToolCall(id="call-1", name="current_time")]))
    conversation.append_message(
        ToolResponseMessage(tool_responses=[ToolResponse(id="call-1", name="current_time", response_data='"noon"')])
    )
    conversation.append_message(RoleMessage.assistant("It is noon."))
    conversation.finish_turn()
    conversation.append_message(RoleMessage.user("thanks"))
    return conversation


@pytest.fixture
def file_storage(tmp_path):
    """File storage writing into a temporary directory."""
    return FileConversationStorage(str(tmp_path / "conversations" / "{}.json"))


class TestFileConversationStorage:
    """Tests for file-backed storage."""

    def test_requires_placeholder(self):
        """Test that the path pattern must contain the id placeholder."""
        with pytest.raises(ValueError):
            FileConversationStorage("/tmp/conversation.json")

    def test_round_trip_preserves_messages_and_turns(self, file_storage, conversation):
        """Test that a saved conversation loads back identically."""
        file_storage.save(conversation)

        loaded = Conversation(conversation_id="conv-1")
        file_storage.load(loaded)

        assert [message.id for message in loaded] == [message.id for message in conversation]
        assert [type(message) for message in loaded] == [type(message) for message in conversation]
        assert [turn.finished for turn in loaded.turns()] == [True, False]
        assert loaded.messages()[2].tool_calls[0].name == "current_time"

    def test_file_is_chronological(self, file_storage, conversation):
        """Test that the document lists turns and messages oldest first."""
        file_storage.save(conversation)

        document = json.loads(file_storage.get_file_path("conv-1").read_text())

        assert document["id"] == "conv-1"
        assert document["turns"][0]["messages"][0]["type"] == "system"
        assert document["turns"][-1]["messages"][-1]["content"] == "thanks"

    def test_load_missing_file_leaves_conversation(self, file_storage):
        """Test that loading an unknown id changes nothing."""
        conversation = Conversation(conversation_id="unknown")
        conversation.append_message(RoleMessage.user("hi"))

        file_storage.load(conversation)

        assert len(conversation) == 1

    def test_flat_messages_load_as_single_turn(self, file_storage):
        """Test that a document without turn metadata degrades to one open turn."""
        path = file_storage.get_file_path("flat")
        path.parent.mkdir(parents=True)
        path.write_text(
            json.dumps(
                {
                    "id": "flat",
                    "messages": [
                        {"type": "role", "role": "user", "content": "hi"},
                        {"type": "role", "role": "assistant", "content": "hello"},
                    ],
                }
            )
        )

        conversation = Conversation(conversation_id="flat")
        file_storage.load(conversation)

        assert [message.content for message in conversation] == ["hi", "hello"]
        assert len(conversation.turns()) == 1
        assert not conversation.last_turn().finished

    def test_malformed_file_raises_conversion_error(self, file_storage):
        """Test that an unknown message variant is reported as a conversion error."""
        path = file_storage.get_file_path("bad")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"id": "bad", "messages": [{"type": "video", "role": "user"}]}))

        with pytest.raises(MessageConversionError):
            file_storage.load(Conversation(conversation_id="bad"))

    def test_clear_and_has(self, file_storage, conversation):
        """Test removing a stored conversation."""
        file_storage.save(conversation)
        assert file_storage.has("conv-1")

        file_storage.clear("conv-1")
        file_storage.clear("conv-1")

        assert not file_storage.has("conv-1")


class TestInMemoryConversationStorage:
    """Tests for in-memory storage."""

    def test_round_trip(self, conversation):
        """Test that saved conversations load back."""
        storage = InMemoryConversationStorage()
        storage.save(conversation)

        loaded = Conversation(conversation_id="conv-1")
        storage.load(loaded)

        assert loaded.messages() == conversation.messages()

    def test_saved_copy_is_detached(self, conversation):
        """Test that later changes are not visible until saved again."""
        storage = InMemoryConversationStorage()
        storage.save(conversation)
        conversation.append_message(RoleMessage.assistant("you're welcome"))

        loaded = Conversation(conversation_id="conv-1")
        storage.load(loaded)

        assert len(loaded) == len(conversation) - 1

    def test_clear(self, conversation):
        """Test removing a stored conversation."""
        storage = InMemoryConversationStorage()
        storage.save(conversation)
        storage.clear("conv-1")

        assert not storage.has("conv-1")


if __name__ == "__main__":
    pytest.main([__file__])
