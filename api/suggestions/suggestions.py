# api/suggestions/suggestions.py
import time
from datetime import datetime, timezone
from typing import Optional

import redis
from fastapi import APIRouter, Depends, Form

from services.conversation_service import ConversationService, get_conversation_service
from services.errors import RateLimited
from services.message_store import MessageStore, get_message_store
from services.suggestion_service import SuggestionService, get_suggestion_service
from utils.redis_conn import RedisConnection, get_redis_connection

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.post("/suggestions")
async def get_suggestions(
    message: str = Form(""),
    conversation_id: Optional[str] = Form(None),
    client_id: str = Form("anonymous"),
    suggestion_service: SuggestionService = Depends(get_suggestion_service),
    redis_connection: RedisConnection = Depends(get_redis_connection),
):
    """Gợi ý câu trả lời cho tin nhắn mới của khách hàng"""
    t0 = time.perf_counter()

    try:
        allowed = redis_connection.check_rate_limit(client_id)
    except redis.RedisError as e:
        # Redis chỉ dùng cho rate limit/cache, không chặn request khi Redis lỗi
        print(f"[Suggestions] Rate limit check skipped: {e}")
        allowed = True
    if not allowed:
        raise RateLimited(f"Rate limit exceeded for client '{client_id}'")

    result = await suggestion_service.get_suggestions(
        message,
        conversation_id=conversation_id,
        redis_cache=redis_connection,
    )
    print(f"[PERF] /suggestions total: {(time.perf_counter() - t0) * 1000:.2f}ms")
    return result


@router.get("/similar")
async def find_similar(
    query: str = "",
    limit: int = 5,
    threshold: Optional[float] = None,
    suggestion_service: SuggestionService = Depends(get_suggestion_service),
):
    results = await suggestion_service.find_similar(query, limit=limit, threshold=threshold)
    return {
        "query": query,
        "results": results,
        "metadata": {
            "total_results": len(results),
            "query_processed_at": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.get("")
async def get_recent_messages(
    limit: int = 20,
    offset: int = 0,
    conversation_id: Optional[str] = None,
    from_business: Optional[bool] = None,
    message_store: MessageStore = Depends(get_message_store),
):
    """Lấy danh sách messages gần nhất"""
    messages = await message_store.get_messages(
        limit=limit,
        offset=offset,
        conversation_id=conversation_id,
        from_business=from_business,
    )
    return {
        "messages": messages,
        "metadata": {
            "limit": limit,
            "offset": offset,
            "retrieved_at": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.get("/business-responses")
async def get_business_responses(
    limit: int = 100,
    conversation_id: Optional[str] = None,
    message_store: MessageStore = Depends(get_message_store),
):
    """Các câu trả lời business gần nhất (dữ liệu nguồn cho gợi ý)"""
    messages = await message_store.get_business_responses(limit=limit, conversation_id=conversation_id)
    return {"messages": messages, "metadata": {"limit": limit, "total_results": len(messages)}}


@router.get("/{conversation_id}/{message_id}/context")
async def get_conversation_context(
    conversation_id: str,
    message_id: str,
    window_size: int = 5,
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """Lịch sử hội thoại dẫn tới message được chọn (message đó nằm cuối danh sách)"""
    messages = await conversation_service.get_conversation_context(message_id, conversation_id, window_size)
    return {
        "conversation_id": conversation_id,
        "message_id": message_id,
        "window_size": window_size,
        "messages": messages,
    }
