from datetime import datetime
import re
import os
from functools import lru_cache
from typing import Dict, List, Optional, Set

from dotenv import load_dotenv

from models import Message
from utils.mongodb_conn import get_mongodb_connection

load_dotenv()

# Content có ít nhất một ký tự không phải khoảng trắng
HAS_TEXT = {"$type": "string", "$regex": r"\S"}

# Message hợp lệ: có content hoặc có media đính kèm
VALID_MESSAGE = {
    "$or": [
        {"content": HAS_TEXT},
        {"media_type": {"$nin": [None, ""]}},
    ]
}


def _to_message(doc: Dict) -> Message:
    doc = dict(doc)
    doc.pop("_id", None)
    doc["content"] = doc.get("content") or ""
    return Message(**doc)


class MessageStore:
    """
    Read access to the raw WhatsApp messages kept in MongoDB.

    Collections:
        messages: one document per message (see models.Message)
        processed_embeddings: one document per message already embedded
    """

    def __init__(self, db=None):
        if db is None:
            self.mongodb_connection = get_mongodb_connection()
            self.db = self.mongodb_connection.get_database(os.getenv("MONGODB_DATABASE", "whatsapp_assistant"))
        else:
            self.mongodb_connection = None
            self.db = db

    def close(self) -> None:
        if self.mongodb_connection is not None:
            self.mongodb_connection.close_mongo_client()

    async def ensure_indexes(self) -> None:
        """Unique (conversation_id, message_id) on both collections plus the sort indexes."""
        await self.db.messages.create_index([("conversation_id", 1), ("message_id", 1)], unique=True)
        await self.db.messages.create_index([("conversation_id", 1), ("timestamp", 1)])
        await self.db.messages.create_index([("timestamp", -1)])
        await self.db.processed_embeddings.create_index([("conversation_id", 1), ("message_id", 1)], unique=True)

    async def get_message(self, message_id: str, conversation_id: str) -> Optional[Message]:
        doc = await self.db.messages.find_one(
            {"message_id": message_id, "conversation_id": conversation_id, **VALID_MESSAGE}
        )
        return _to_message(doc) if doc else None

    async def get_messages_by_conversation(self, conversation_id: str) -> List[Message]:
        """All messages of one conversation, oldest first (ties by insertion order)."""
        cursor = self.db.messages.find({"conversation_id": conversation_id, **VALID_MESSAGE}).sort(
            [("timestamp", 1), ("_id", 1)]
        )
        docs = await cursor.to_list(length=None)
        return [_to_message(doc) for doc in docs]

    async def get_messages(
        self,
        limit: int = 20,
        offset: int = 0,
        conversation_id: Optional[str] = None,
        from_business: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search_text: Optional[str] = None,
    ) -> List[Message]:
        """Newest messages first, optionally filtered."""
        query: Dict = dict(VALID_MESSAGE)
        if conversation_id:
            query["conversation_id"] = conversation_id
        if from_business is not None:
            query["is_from_business"] = from_business
        if start_date or end_date:
            query["timestamp"] = {}
            if start_date:
                query["timestamp"]["$gte"] = start_date
            if end_date:
                query["timestamp"]["$lte"] = end_date
        if search_text:
            query["content"] = {"$regex": re.escape(search_text), "$options": "i"}

        cursor = self.db.messages.find(query).sort([("timestamp", -1), ("_id", -1)]).skip(offset).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [_to_message(doc) for doc in docs]

    async def get_business_responses(self, limit: int = 100, conversation_id: Optional[str] = None) -> List[Message]:
        query = {"is_from_business": True, "content": HAS_TEXT}
        if conversation_id:
            query["conversation_id"] = conversation_id
        cursor = self.db.messages.find(query).sort("timestamp", -1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [_to_message(doc) for doc in docs]

    async def get_pending_messages(self, limit: int = 100) -> List[Message]:
        """Text messages that have not been embedded yet, grouped by conversation."""
        pipeline = [
            {"$match": {"content": HAS_TEXT}},
            {
                "$lookup": {
                    "from": "processed_embeddings",
                    "let": {"mid": "$message_id", "cid": "$conversation_id"},
                    "pipeline": [
                        {
                            "$match": {
                                "$expr": {
                                    "$and": [
                                        {"$eq": ["$message_id", "$$mid"]},
                                        {"$eq": ["$conversation_id", "$$cid"]},
                                    ]
                                }
                            }
                        }
                    ],
                    "as": "processed",
                }
            },
            {"$match": {"processed": {"$size": 0}}},
            {"$sort": {"conversation_id": 1, "timestamp": 1}},
            {"$limit": limit},
            {"$project": {"processed": 0}},
        ]
        docs = await self.db.messages.aggregate(pipeline).to_list(length=limit)
        return [_to_message(doc) for doc in docs]

    async def get_business_conversation_ids(self, min_messages: int = 3, min_length: int = 50) -> Set[str]:
        """Conversations where the business sent at least ``min_messages`` substantial replies."""
        pipeline = [
            {"$match": {"is_from_business": True, "content": {"$type": "string"}}},
            {"$match": {"$expr": {"$gt": [{"$strLenCP": "$content"}, min_length]}}},
            {"$group": {"_id": "$conversation_id", "count": {"$sum": 1}}},
            {"$match": {"count": {"$gte": min_messages}}},
        ]
        docs = await self.db.messages.aggregate(pipeline).to_list(length=None)
        return {doc["_id"] for doc in docs}

    async def mark_processed(self, message_id: str, conversation_id: str, status: str = "success") -> None:
        await self.db.processed_embeddings.update_one(
            {"message_id": message_id, "conversation_id": conversation_id},
            {"$set": {"status": status, "processed_at": datetime.now()}},
            upsert=True,
        )

    async def get_stats(self) -> Dict:
        total_messages = await self.db.messages.count_documents({})
        business_messages = await self.db.messages.count_documents({"is_from_business": True})
        total_chats = len(await self.db.messages.distinct("conversation_id"))
        processed_count = await self.db.processed_embeddings.count_documents({"status": "success"})
        failed_count = await self.db.processed_embeddings.count_documents({"status": "failed"})
        skipped_count = await self.db.processed_embeddings.count_documents({"status": "skipped"})
        return {
            "total_messages": total_messages,
            "total_chats": total_chats,
            "business_messages": business_messages,
            "client_messages": total_messages - business_messages,
            "processed_count": processed_count,
            "failed_count": failed_count,
            "skipped_count": skipped_count,
        }


@lru_cache(maxsize=1)
def get_message_store() -> MessageStore:
    """
    FastAPI dependency factory that returns a singleton MessageStore instance.
    """
    return MessageStore()
