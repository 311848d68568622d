import asyncio
import os
import threading
from functools import lru_cache
from typing import Dict, List, Optional, Sequence

import numpy as np
from dotenv import load_dotenv

from models import EmbeddingRecord, MetadataFilter, SuggestionResult
from services.errors import (
    DimensionMismatch,
    IndexUnavailable,
    InvalidInput,
    OperationTimeout,
    SuggestionError,
)
from utils.chroma_conn import get_chroma_connection

load_dotenv()


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Dot product over magnitudes.

    Returns exactly 0.0 when either vector has zero magnitude and raises
    DimensionMismatch when the lengths differ.
    """
    a = np.asarray(vector_a, dtype=np.float64)
    b = np.asarray(vector_b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatch(len(a), len(b))

    magnitude_a = np.linalg.norm(a)
    magnitude_b = np.linalg.norm(b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (magnitude_a * magnitude_b))
    return max(-1.0, min(1.0, similarity))


class SimilarityService:
    """
    Ranks stored messages against a query vector.

    The collection is created in chroma's cosine space, so every distance the
    index returns is ``1 - cosine_similarity`` in [0, 2] and the score reported
    to callers is ``1 - distance``.
    """

    COLLECTION_DESCRIPTION = "WhatsApp conversation embeddings"

    def __init__(
        self,
        chroma_client=None,
        collection_name: Optional[str] = None,
        dimension: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        max_results: Optional[int] = None,
        query_timeout: Optional[float] = None,
    ):
        if chroma_client is None:
            self.chroma_client = get_chroma_connection().get_client()
        else:
            self.chroma_client = chroma_client

        self.collection_name = collection_name or os.getenv("CHROMA_COLLECTION", "conversation_embeddings")
        self.dimension = dimension if dimension is not None else int(os.getenv("EMBEDDING_DIMENSIONS", 384))
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))
        )
        self.max_results = max_results if max_results is not None else int(os.getenv("MAX_RESULTS", "3"))
        self.query_timeout = (
            query_timeout if query_timeout is not None else float(os.getenv("INDEX_TIMEOUT_SECONDS", "10"))
        )

        self.collection = None
        self._collection_lock = threading.Lock()

    def ensure_collection(self):
        """Get-or-create the backing collection. Idempotent and thread-safe."""
        if self.collection is not None:
            return self.collection
        with self._collection_lock:
            if self.collection is None:
                try:
                    self.collection = self.chroma_client.get_or_create_collection(
                        name=self.collection_name,
                        metadata={
                            "hnsw:space": "cosine",
                            "description": self.COLLECTION_DESCRIPTION,
                        },
                    )
                except Exception as e:
                    raise IndexUnavailable(f"Could not open collection '{self.collection_name}': {e}") from e
                print(f"[Similarity] Collection ready: {self.collection_name}")
        return self.collection

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector))

    async def _call_index(self, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.query_timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeout(f"Vector index did not answer within {self.query_timeout}s") from e
        except SuggestionError:
            raise
        except Exception as e:
            raise IndexUnavailable(f"Vector index error: {type(e).__name__}: {e}") from e

    def _query(self, query_vector: List[float], top_k: int, metadata_filter: MetadataFilter) -> Dict:
        collection = self.ensure_collection()
        if collection.count() == 0:
            return {}
        return collection.query(
            query_embeddings=[query_vector],
            n_results=top_k,
            where=metadata_filter.to_where(),
            include=["documents", "metadatas", "distances"],
        )

    async def find_similar(
        self,
        query_vector: Sequence[float],
        top_k: Optional[int] = None,
        metadata_filter: MetadataFilter = MetadataFilter.NONE,
        min_similarity: Optional[float] = None,
    ) -> List[SuggestionResult]:
        """
        Query the ``top_k`` nearest neighbours and keep those whose similarity
        reaches the threshold, most similar first.

        Raises:
            DimensionMismatch: query vector does not match the index dimension
            InvalidInput: non-positive top_k or threshold outside [0, 1]
            IndexUnavailable: the backing store failed
            OperationTimeout: the query exceeded ``query_timeout``
        """
        self._check_dimension(query_vector)

        top_k = self.max_results if top_k is None else top_k
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise InvalidInput(f"top_k must be a positive integer, got {top_k!r}")

        threshold = self.similarity_threshold if min_similarity is None else min_similarity
        if not 0.0 <= threshold <= 1.0:
            raise InvalidInput(f"Similarity threshold must be within [0, 1], got {threshold}")

        vector = [float(v) for v in query_vector]
        raw_results = await self._call_index(self._query, vector, top_k, metadata_filter)
        results = self.format_similarity_results(raw_results, threshold)
        print(
            f"[Similarity] {len(results)} result(s) above {threshold} "
            f"(top_k={top_k}, filter={metadata_filter.value})"
        )
        return results

    async def find_similar_business_responses(
        self,
        query_vector: Sequence[float],
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> List[SuggestionResult]:
        """Same as find_similar, restricted to messages the business sent."""
        return await self.find_similar(
            query_vector,
            top_k=top_k,
            metadata_filter=MetadataFilter.BUSINESS_ONLY,
            min_similarity=min_similarity,
        )

    @staticmethod
    def format_similarity_results(results: Dict, threshold: float) -> List[SuggestionResult]:
        if not results or not results.get("documents") or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = (results.get("metadatas") or [[]])[0] or []
        distances = (results.get("distances") or [[]])[0] or []

        formatted = []
        for i, document in enumerate(documents):
            if i >= len(distances) or distances[i] is None:
                continue
            similarity = 1.0 - float(distances[i])
            if similarity < threshold:
                continue
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            formatted.append(
                SuggestionResult(document=document, similarity_score=similarity, metadata=dict(metadata))
            )

        # sort ổn định: cùng score thì giữ thứ tự index trả về
        return sorted(formatted, key=lambda r: r.similarity_score, reverse=True)

    def _upsert(self, records: List[EmbeddingRecord]) -> None:
        collection = self.ensure_collection()
        collection.upsert(
            ids=[r.id for r in records],
            embeddings=[r.vector for r in records],
            documents=[r.document_text for r in records],
            metadatas=[r.metadata.to_chroma() for r in records],
        )

    async def add_message(self, record: EmbeddingRecord) -> str:
        await self.add_messages([record])
        return record.id

    async def add_messages(self, records: List[EmbeddingRecord]) -> int:
        """Upsert records; re-embedding a message id overwrites its previous record."""
        if not records:
            return 0
        for record in records:
            self._check_dimension(record.vector)
        await self._call_index(self._upsert, records)
        return len(records)

    def _clear(self) -> int:
        collection = self.ensure_collection()
        ids = (collection.get(include=[]) or {}).get("ids") or []
        if ids:
            collection.delete(ids=ids)
        return len(ids)

    async def clear_collection(self) -> int:
        deleted = await self._call_index(self._clear)
        print(f"[Similarity] Deleted {deleted} record(s) from {self.collection_name}")
        return deleted

    async def get_collection_stats(self) -> Dict:
        count = await self._call_index(lambda: self.ensure_collection().count())
        return {
            "total_messages": count,
            "collection_name": self.collection_name,
            "similarity_threshold": self.similarity_threshold,
            "max_results": self.max_results,
            "dimension": self.dimension,
        }


@lru_cache(maxsize=1)
def get_similarity_service() -> SimilarityService:
    """
    FastAPI dependency factory that returns a singleton SimilarityService instance.
    """
    return SimilarityService()
