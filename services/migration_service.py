import asyncio
import os
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Optional, Set

from dotenv import load_dotenv

from models import EmbeddingMetadata, EmbeddingRecord, Message
from services.embedding_service import get_embedding_service
from services.errors import DimensionMismatch
from services.message_store import get_message_store
from services.similarity_service import get_similarity_service
from utils.anonymizer import anonymize_text

load_dotenv()

DEFAULT_AUTO_RESPONSE_PATTERNS = [
    "Welcome English School",
    "horario de atención",
    "no podemos atenderte",
]
DEFAULT_EXCLUDED_CHAT_PATTERNS = ["familia", "family", "mamis"]
MIN_CONTENT_LENGTH = 5


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class MigrationService:
    """
    Embeds historical messages into the vector index.

    Short texts, canned auto-responses and personal chats are skipped and
    never embedded. Every other message is embedded; whether its chat counts
    as a business conversation only goes into the record's metadata.
    """

    def __init__(self, message_store=None, embedding_service=None, similarity_service=None, batch_size: int = 64):
        self.message_store = message_store if message_store is not None else get_message_store()
        self.embedding_service = embedding_service if embedding_service is not None else get_embedding_service()
        self.similarity_service = similarity_service if similarity_service is not None else get_similarity_service()
        self.batch_size = batch_size
        self.auto_response_patterns = [
            p.lower() for p in _env_list("AUTO_RESPONSE_PATTERNS", DEFAULT_AUTO_RESPONSE_PATTERNS)
        ]
        self.excluded_chat_patterns = [
            p.lower() for p in _env_list("EXCLUDED_CHAT_PATTERNS", DEFAULT_EXCLUDED_CHAT_PATTERNS)
        ]

    def is_eligible(self, message: Message) -> bool:
        content = message.content.strip()
        if len(content) <= MIN_CONTENT_LENGTH:
            return False
        lowered = content.lower()
        if any(pattern in lowered for pattern in self.auto_response_patterns):
            return False
        chat_name = (message.chat_name or "").lower()
        if any(pattern in chat_name for pattern in self.excluded_chat_patterns):
            return False
        return True

    @staticmethod
    def build_record(message: Message, text: str, vector: List[float], business_conversations: Set[str]) -> EmbeddingRecord:
        return EmbeddingRecord(
            id=message.message_id,
            vector=vector,
            document_text=text,
            metadata=EmbeddingMetadata(
                conversation_id=message.conversation_id,
                chat_name=message.chat_name,
                is_business_response=message.is_from_business,
                is_business_conversation=message.conversation_id in business_conversations,
                timestamp=message.timestamp.isoformat(),
                content_length=len(message.content),
            ),
        )

    async def migrate(self, limit: int = 100) -> Dict:
        """
        Embed up to ``limit`` pending messages.

        A failed batch is recorded as failed and the run continues with the
        next one; a dimension mismatch is a configuration error and aborts.
        """
        t0 = time.perf_counter()
        pending = await self.message_store.get_pending_messages(limit=limit)

        eligible: List[Message] = []
        skipped = 0
        for message in pending:
            if self.is_eligible(message):
                eligible.append(message)
            else:
                await self.message_store.mark_processed(message.message_id, message.conversation_id, status="skipped")
                skipped += 1

        processed = 0
        failed = 0
        if eligible:
            business_conversations = await self.message_store.get_business_conversation_ids()
            for start in range(0, len(eligible), self.batch_size):
                batch = eligible[start:start + self.batch_size]
                texts = [anonymize_text(m.content.strip()) for m in batch]
                try:
                    vectors = await asyncio.to_thread(self.embedding_service.encode_batch, texts)
                    records = [
                        self.build_record(m, text, vector, business_conversations)
                        for m, text, vector in zip(batch, texts, vectors)
                    ]
                    await self.similarity_service.add_messages(records)
                except DimensionMismatch:
                    raise
                except Exception as e:
                    print(f"[Migration] Batch of {len(batch)} failed: {type(e).__name__}: {e}")
                    for m in batch:
                        await self.message_store.mark_processed(m.message_id, m.conversation_id, status="failed")
                    failed += len(batch)
                    continue

                for m in batch:
                    await self.message_store.mark_processed(m.message_id, m.conversation_id, status="success")
                processed += len(batch)

        elapsed = (time.perf_counter() - t0) * 1000
        print(
            f"[Migration] pending={len(pending)} processed={processed} skipped={skipped} "
            f"failed={failed} in {elapsed:.2f}ms"
        )
        return {
            "status": "success",
            "pending_count": len(pending),
            "processed": processed,
            "skipped": skipped,
            "failed": failed,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def get_migration_stats(self) -> Dict:
        store_stats = await self.message_store.get_stats()
        collection_stats = await self.similarity_service.get_collection_stats()
        total = store_stats["total_messages"]
        handled = store_stats["processed_count"] + store_stats["failed_count"] + store_stats["skipped_count"]
        return {
            **store_stats,
            "pending_count": max(total - handled, 0),
            "progress_percentage": round(handled / total * 100) if total > 0 else 0,
            "embedded_count": collection_stats["total_messages"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


@lru_cache(maxsize=1)
def get_migration_service() -> MigrationService:
    """
    FastAPI dependency factory that returns a singleton MigrationService instance.
    """
    return MigrationService()
