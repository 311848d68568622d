# utils/redis_conn.py
import hashlib
import redis
import json
import os
from functools import lru_cache
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _query_key(query: str) -> str:
    # hash() của Python thay đổi theo process, dùng sha256 để key ổn định giữa các worker
    digest = hashlib.sha256(query.encode("utf-8")).hexdigest()
    return f"embed:query:{digest}"


class RedisConnection:
    """
    Thin wrapper around a Redis client with helper methods for
    caching query embeddings and rate limiting.
    """

    def __init__(self):
        # Load từ .env
        redis_uri = os.getenv("REDIS_URI")
        if redis_uri:
            self.client = redis.from_url(redis_uri, decode_responses=True)
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port_raw = os.getenv("REDIS_PORT", "6379")
            redis_db_raw = os.getenv("REDIS_DB", "0")

            try:
                redis_port = int(redis_port_raw)
            except ValueError:
                redis_port = 6379

            try:
                redis_db = int(redis_db_raw) if redis_db_raw.strip() != "" else 0
            except ValueError:
                redis_db = 0

            redis_password = os.getenv("REDIS_PASSWORD", None)

            self.client = redis.Redis(
                host=redis_host,
                port=redis_port,
                db=redis_db,
                password=redis_password if redis_password else None,
                socket_timeout=int(os.getenv("REDIS_SOCKET_TIMEOUT", 5)),
                decode_responses=True,
            )

    # Cache embeddings (query → embedding)
    def cache_query_embedding(self, query: str, embedding: List[float], ttl=None):
        if ttl is None:
            ttl = int(os.getenv("CACHE_EMBEDDING_TTL", 1800))
        self.client.setex(_query_key(query), ttl, json.dumps(embedding))

    def get_query_embedding(self, query: str) -> Optional[List[float]]:
        data = self.client.get(_query_key(query))
        if data:
            return json.loads(data)
        return None

    # Rate limiting (fixed window)
    def check_rate_limit(self, client_id: str, limit=None, window=None) -> bool:
        if limit is None:
            limit = int(os.getenv("RATE_LIMIT_REQUESTS", 20))
        if window is None:
            window = int(os.getenv("RATE_LIMIT_WINDOW", 60))

        key = f"ratelimit:{client_id}"
        current = self.client.incr(key)
        if current == 1:
            self.client.expire(key, window)
        return current <= limit

    def ping(self):
        """Check if Redis connection is alive"""
        return self.client.ping()

    def check_connection(self):
        """Check if Redis connection is alive (alias for ping with error handling)"""
        try:
            if self.client and self.ping():
                return True
        except redis.ConnectionError as e:
            print(f"[Redis] Connection error: {e}")
        return False


@lru_cache(maxsize=1)
def get_redis_connection() -> RedisConnection:
    """
    FastAPI dependency factory that returns a singleton RedisConnection instance.
    """
    return RedisConnection()
