from sentence_transformers import SentenceTransformer
import torch
import os
from functools import lru_cache
from dotenv import load_dotenv
from typing import List, Union
import numpy as np

load_dotenv()


class EmbeddingService:
    """
    Wraps the sentence-transformers model that maps message text to a vector.
    Model và device được cấu hình từ .env, không cần truyền tham số.

    Embeddings are L2-normalized so that the cosine distance reported by the
    vector index is directly ``1 - cosine_similarity``.
    """

    def __init__(self):
        self.model_name = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
        self.cache_folder = os.getenv("EMBEDDING_CACHE_FOLDER", None)
        self.device = os.getenv("EMBEDDING_DEVICE", "cpu")

        print(f"[Embedding] Loading model: {self.model_name}")
        print(f"[Embedding] Cache folder: {self.cache_folder or 'default (~/.cache/huggingface/)'}")

        if self.device == "cuda" and not torch.cuda.is_available():
            print("[Embedding] Warning: CUDA requested but not available, falling back to CPU")
            self.device = "cpu"

        if self.cache_folder:
            self.model = SentenceTransformer(self.model_name, cache_folder=self.cache_folder, device=self.device)
        else:
            self.model = SentenceTransformer(self.model_name, device=self.device)

        if self.model is None:
            raise ValueError("Model failed to load - model is None")

        print(f"[Embedding] Model loaded on {self.device}")

    def encode(
        self,
        texts: Union[str, List[str]],
        batch_size: int = 64,
        show_progress_bar: bool = False,
        normalize_embeddings: bool = True,
    ) -> np.ndarray:
        """
        Encode text(s) thành embeddings.

        Args:
            texts: String hoặc list of strings
            batch_size: Batch size cho encoding
            show_progress_bar: Hiển thị progress bar
            normalize_embeddings: Normalize embeddings về unit vector

        Returns:
            Numpy array, one row per input text
        """
        return self.model.encode(
            texts,
            batch_size=batch_size,
            show_progress_bar=show_progress_bar,
            convert_to_numpy=True,
            normalize_embeddings=normalize_embeddings,
        )

    def encode_single(self, text: str) -> List[float]:
        """Encode một text duy nhất, trả về list[float]"""
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Text must be a non-empty string")
        return self.encode([text])[0].tolist()

    def encode_batch(self, texts: List[str], batch_size: int = 64) -> List[List[float]]:
        if not texts:
            return []
        return self.encode(texts, batch_size=batch_size).tolist()


@lru_cache(maxsize=1)
def get_embedding_service() -> EmbeddingService:
    """
    Singleton factory cho EmbeddingService với @lru_cache.
    """
    return EmbeddingService()
