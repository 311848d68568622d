import asyncio
import os
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from models import SuggestionMetadata, SuggestionResponse, SuggestionResult
from services.conversation_service import get_conversation_service
from services.embedding_service import get_embedding_service
from services.errors import EmbeddingFailure, InvalidInput, OperationTimeout
from services.similarity_service import get_similarity_service

load_dotenv()


class SuggestionService:
    SUGGESTION_COUNT = 3
    CONVERSATION_COUNT = 3

    def __init__(
        self,
        embedding_service=None,
        similarity_service=None,
        conversation_service=None,
        embedding_timeout: Optional[float] = None,
        context_timeout: Optional[float] = None,
    ):
        if embedding_service is None:
            self.embedding_service = get_embedding_service()
        else:
            self.embedding_service = embedding_service

        if similarity_service is None:
            self.similarity_service = get_similarity_service()
        else:
            self.similarity_service = similarity_service

        if conversation_service is None:
            self.conversation_service = get_conversation_service()
        else:
            self.conversation_service = conversation_service

        self.embedding_timeout = (
            embedding_timeout
            if embedding_timeout is not None
            else float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
        )
        self.context_timeout = (
            context_timeout if context_timeout is not None else float(os.getenv("CONTEXT_TIMEOUT_SECONDS", "5"))
        )

    @staticmethod
    def _validate_text(text: Optional[str], field: str = "message") -> str:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput(f"{field} is required")
        return text.strip()

    async def embed_query(self, text: str, redis_cache=None) -> List[float]:
        """
        Embed ``text``, going through the Redis query cache when one is given.

        Raises:
            EmbeddingFailure: the model raised or returned nothing usable
            OperationTimeout: the model did not answer within ``embedding_timeout``
        """
        if redis_cache:
            try:
                cached = redis_cache.get_query_embedding(text)
                if cached:
                    print("[Suggestions] Using cached query embedding")
                    return cached
            except Exception as e:
                print(f"[Suggestions] Cache check error: {e}")

        t0 = time.perf_counter()
        try:
            vector = await asyncio.wait_for(
                asyncio.to_thread(self.embedding_service.encode_single, text),
                timeout=self.embedding_timeout,
            )
        except asyncio.TimeoutError as e:
            raise OperationTimeout(f"Embedding did not finish within {self.embedding_timeout}s") from e
        except Exception as e:
            raise EmbeddingFailure(f"Embedding generation failed: {type(e).__name__}: {e}") from e

        vector = [float(v) for v in vector]
        if not vector:
            raise EmbeddingFailure("Embedding generation returned an empty vector")
        print(f"[Suggestions] Query embedding took: {(time.perf_counter() - t0) * 1000:.2f}ms")

        if redis_cache:
            try:
                redis_cache.cache_query_embedding(text, vector)
            except Exception as e:
                print(f"[Suggestions] Cache save error: {e}")
        return vector

    async def get_suggestions(
        self,
        message_text: str,
        conversation_id: Optional[str] = None,
        redis_cache=None,
    ) -> SuggestionResponse:
        """
        Suggest business replies for an incoming customer message.

        1. Validate the text (no I/O on failure).
        2. Embed it; any failure aborts the request.
        3. Rank historical business replies by similarity.
        4. Attach recent conversations as context; failure here degrades to [].
        """
        text = self._validate_text(message_text)
        timings = {}

        t0 = time.perf_counter()
        query_vector = await self.embed_query(text, redis_cache=redis_cache)
        timings["embedding"] = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        similar_responses = await self.similarity_service.find_similar_business_responses(
            query_vector, top_k=self.SUGGESTION_COUNT
        )
        timings["similarity"] = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        try:
            similar_conversations = await asyncio.wait_for(
                self.conversation_service.get_similar_conversations(
                    limit=self.CONVERSATION_COUNT,
                    exclude_conversation_id=conversation_id,
                ),
                timeout=self.context_timeout,
            )
        except Exception as e:
            print(f"[Suggestions] Conversation context unavailable, continuing without it: {type(e).__name__}: {e}")
            similar_conversations = []
        timings["context"] = (time.perf_counter() - t0) * 1000

        print("[PERF] Suggestion timings (ms):")
        for step, duration in timings.items():
            print(f"  {step}: {duration:.2f}ms")

        return SuggestionResponse(
            suggestions=[result.document for result in similar_responses],
            similar_conversations=similar_conversations,
            metadata=SuggestionMetadata(
                processed_at=datetime.now(timezone.utc),
                similarity_count=len(similar_responses),
                conversation_count=len(similar_conversations),
            ),
        )

    async def find_similar(
        self,
        query_text: str,
        limit: int = 5,
        threshold: Optional[float] = None,
        redis_cache=None,
    ) -> List[SuggestionResult]:
        """Score free text against every stored message, customer or business."""
        text = self._validate_text(query_text, field="query")
        query_vector = await self.embed_query(text, redis_cache=redis_cache)
        return await self.similarity_service.find_similar(query_vector, top_k=limit, min_similarity=threshold)


@lru_cache(maxsize=1)
def get_suggestion_service() -> SuggestionService:
    """
    FastAPI dependency factory that returns a singleton SuggestionService instance.
    """
    return SuggestionService()
