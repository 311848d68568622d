import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import numpy as np
import pytest

from models import Message
from services.conversation_service import ConversationService
from services.similarity_service import SimilarityService
from services.suggestion_service import SuggestionService

DIMENSION = 3
BASE_TIME = datetime(2024, 3, 1, 9, 0, 0)


def make_message(
    message_id: str,
    conversation_id: str = "chat1",
    content: str = "hola",
    minutes: int = 0,
    is_from_business: bool = False,
    chat_name: Optional[str] = None,
) -> Message:
    return Message(
        message_id=message_id,
        conversation_id=conversation_id,
        chat_name=chat_name,
        sender="business" if is_from_business else "customer",
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        is_from_business=is_from_business,
    )


def _matches(metadata: Dict, where: Optional[Dict]) -> bool:
    if not where:
        return True
    for key, condition in where.items():
        if metadata.get(key) != condition["$eq"]:
            return False
    return True


class FakeCollection:
    """In-memory stand-in for a chroma collection in cosine space."""

    def __init__(self, canned_results: Optional[Dict] = None, query_delay: float = 0.0, fail_query: bool = False):
        self.records: Dict[str, Dict] = {}
        self.canned_results = canned_results
        self.query_delay = query_delay
        self.fail_query = fail_query
        self.query_calls: List[Dict] = []

    def count(self) -> int:
        if self.canned_results is not None:
            return len(self.canned_results["documents"][0])
        return len(self.records)

    def upsert(self, ids, embeddings, documents, metadatas):
        for i, record_id in enumerate(ids):
            self.records[record_id] = {
                "embedding": embeddings[i],
                "document": documents[i],
                "metadata": metadatas[i],
            }

    def get(self, include=None):
        return {"ids": list(self.records)}

    def delete(self, ids):
        for record_id in ids:
            self.records.pop(record_id, None)

    def query(self, query_embeddings, n_results, where=None, include=None):
        self.query_calls.append({"query_embeddings": query_embeddings, "n_results": n_results, "where": where})
        if self.query_delay:
            time.sleep(self.query_delay)
        if self.fail_query:
            raise ConnectionError("chroma is down")
        if self.canned_results is not None:
            return self.canned_results

        query = np.asarray(query_embeddings[0], dtype=float)
        scored = []
        for record in self.records.values():
            if not _matches(record["metadata"], where):
                continue
            vector = np.asarray(record["embedding"], dtype=float)
            cos = float(np.dot(query, vector) / (np.linalg.norm(query) * np.linalg.norm(vector)))
            scored.append((1.0 - cos, record))
        scored.sort(key=lambda item: item[0])
        scored = scored[:n_results]
        return {
            "ids": [[r["document"] for _, r in scored]],
            "documents": [[r["document"] for _, r in scored]],
            "metadatas": [[r["metadata"] for _, r in scored]],
            "distances": [[d for d, _ in scored]],
        }


class FakeChromaClient:
    def __init__(self, collection: Optional[FakeCollection] = None, fail: bool = False):
        self.collection = collection if collection is not None else FakeCollection()
        self.fail = fail
        self.calls: List[Dict] = []

    def get_or_create_collection(self, name, metadata=None):
        self.calls.append({"name": name, "metadata": metadata})
        if self.fail:
            raise ConnectionError("Could not connect to chroma")
        return self.collection


class FakeEmbeddingService:
    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default=None, error=None, delay=0.0):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    def encode_single(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.vectors.get(text, self.default)

    def encode_batch(self, texts: List[str], batch_size: int = 64) -> List[List[float]]:
        return [self.encode_single(text) for text in texts]


class FakeMessageStore:
    def __init__(self, messages: Optional[List[Message]] = None, error: Optional[Exception] = None):
        self.messages = list(messages or [])
        self.error = error
        self.processed: Dict[tuple, str] = {}
        self.indexes_ensured = False
        self.closed = False

    async def ensure_indexes(self):
        self.indexes_ensured = True

    def close(self):
        self.closed = True

    async def get_message(self, message_id, conversation_id):
        if self.error:
            raise self.error
        for m in self.messages:
            if m.message_id == message_id and m.conversation_id == conversation_id:
                return m
        return None

    async def get_messages_by_conversation(self, conversation_id):
        if self.error:
            raise self.error
        return sorted((m for m in self.messages if m.conversation_id == conversation_id), key=lambda m: m.timestamp)

    async def get_messages(self, limit=20, offset=0, conversation_id=None, from_business=None, **kwargs):
        if self.error:
            raise self.error
        selected = [
            m
            for m in self.messages
            if (conversation_id is None or m.conversation_id == conversation_id)
            and (from_business is None or m.is_from_business == from_business)
        ]
        selected.sort(key=lambda m: m.timestamp, reverse=True)
        return selected[offset:offset + limit]

    async def get_business_responses(self, limit=100, conversation_id=None):
        return await self.get_messages(limit=limit, conversation_id=conversation_id, from_business=True)

    async def get_pending_messages(self, limit=100):
        pending = [m for m in self.messages if (m.message_id, m.conversation_id) not in self.processed]
        return pending[:limit]

    async def get_business_conversation_ids(self, min_messages=3, min_length=50):
        counts: Dict[str, int] = {}
        for m in self.messages:
            if m.is_from_business and len(m.content) > min_length:
                counts[m.conversation_id] = counts.get(m.conversation_id, 0) + 1
        return {cid for cid, n in counts.items() if n >= min_messages}

    async def mark_processed(self, message_id, conversation_id, status="success"):
        self.processed[(message_id, conversation_id)] = status

    async def get_stats(self):
        statuses = list(self.processed.values())
        business = sum(1 for m in self.messages if m.is_from_business)
        return {
            "total_messages": len(self.messages),
            "total_chats": len({m.conversation_id for m in self.messages}),
            "business_messages": business,
            "client_messages": len(self.messages) - business,
            "processed_count": statuses.count("success"),
            "failed_count": statuses.count("failed"),
            "skipped_count": statuses.count("skipped"),
        }


class FakeRedis:
    def __init__(self, allow: bool = True):
        self.allow = allow
        self.embeddings: Dict[str, List[float]] = {}

    def get_query_embedding(self, query):
        return self.embeddings.get(query)

    def cache_query_embedding(self, query, embedding, ttl=None):
        self.embeddings[query] = embedding

    def check_rate_limit(self, client_id, limit=None, window=None):
        return self.allow


def canned(documents, distances, metadatas=None):
    return {
        "ids": [[f"id{i}" for i in range(len(documents))]],
        "documents": [documents],
        "metadatas": [metadatas or [{"is_business_response": True} for _ in documents]],
        "distances": [distances],
    }


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def chroma_client(collection):
    return FakeChromaClient(collection)


@pytest.fixture
def similarity_service(chroma_client):
    return SimilarityService(
        chroma_client=chroma_client,
        collection_name="test_embeddings",
        dimension=DIMENSION,
        similarity_threshold=0.7,
        max_results=3,
        query_timeout=2,
    )


@pytest.fixture
def message_store():
    return FakeMessageStore(
        [
            make_message("c1", "chat1", "What time do classes start?", 0, chat_name="Ana"),
            make_message("b1", "chat1", "Classes start at 9am every weekday.", 1, True, chat_name="Ana"),
            make_message("c2", "chat2", "How much is the course?", 2, chat_name="Luis"),
            make_message("b2", "chat2", "The course costs 120 euros per month.", 3, True, chat_name="Luis"),
            make_message("c3", "chat3", "Do you have evening groups?", 4),
        ]
    )


@pytest.fixture
def conversation_service(message_store):
    return ConversationService(message_store=message_store)


@pytest.fixture
def embedding_service():
    return FakeEmbeddingService()


@pytest.fixture
def suggestion_service(embedding_service, similarity_service, conversation_service):
    return SuggestionService(
        embedding_service=embedding_service,
        similarity_service=similarity_service,
        conversation_service=conversation_service,
        embedding_timeout=2,
        context_timeout=2,
    )
