# models/Suggestion_schema.py
from pydantic import BaseModel
from datetime import datetime
from typing import Dict, List
from .Conversation_schema import ConversationGroup


class SuggestionResult(BaseModel):
    document: str
    similarity_score: float
    metadata: Dict = {}


class SuggestionMetadata(BaseModel):
    processed_at: datetime
    similarity_count: int
    conversation_count: int


class SuggestionResponse(BaseModel):
    suggestions: List[str]
    similar_conversations: List[ConversationGroup] = []
    metadata: SuggestionMetadata
