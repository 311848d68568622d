from .Message_schema import Message
from .Conversation_schema import ConversationGroup
from .Embedding_schema import EmbeddingMetadata, EmbeddingRecord, MetadataFilter
from .Suggestion_schema import SuggestionMetadata, SuggestionResponse, SuggestionResult

__all__ = [
    "Message",
    "ConversationGroup",
    "EmbeddingMetadata",
    "EmbeddingRecord",
    "MetadataFilter",
    "SuggestionMetadata",
    "SuggestionResponse",
    "SuggestionResult",
]
