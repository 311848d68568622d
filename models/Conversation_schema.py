# models/Conversation_schema.py
from pydantic import BaseModel
from typing import List
from .Message_schema import Message


class ConversationGroup(BaseModel):
    conversation_id: str
    display_name: str
    messages: List[Message] = []
