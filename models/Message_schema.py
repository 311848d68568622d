# models/Message_schema.py
from pydantic import BaseModel, model_validator
from datetime import datetime
from typing import Optional


class Message(BaseModel):
    message_id: str
    conversation_id: str
    chat_name: Optional[str] = None
    sender: str
    content: str = ""
    timestamp: datetime
    is_from_business: bool = False
    media_type: Optional[str] = None  # "image", "audio", "document", ...
    filename: Optional[str] = None

    @model_validator(mode="after")
    def check_content_or_media(self):
        # Chỉ cho phép content rỗng khi message có media đính kèm
        if not self.content and not self.media_type:
            raise ValueError("content must be non-empty unless the message carries media")
        return self
