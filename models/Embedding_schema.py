# models/Embedding_schema.py
from enum import Enum
from pydantic import BaseModel
from typing import Dict, List, Optional


class EmbeddingMetadata(BaseModel):
    conversation_id: str
    chat_name: Optional[str] = None
    is_business_response: bool = False
    is_business_conversation: bool = False
    timestamp: str
    content_length: int = 0

    def to_chroma(self) -> Dict:
        # Chroma không chấp nhận giá trị None trong metadata
        return self.model_dump(exclude_none=True)


class EmbeddingRecord(BaseModel):
    id: str  # = message_id
    vector: List[float]
    document_text: str
    metadata: EmbeddingMetadata


class MetadataFilter(str, Enum):
    """Named metadata predicates accepted by the similarity queries."""

    NONE = "none"
    BUSINESS_ONLY = "business_only"

    def to_where(self) -> Optional[Dict]:
        if self is MetadataFilter.BUSINESS_ONLY:
            return {"is_business_response": {"$eq": True}}
        return None
