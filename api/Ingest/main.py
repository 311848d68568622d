import asyncio
from typing import Optional
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Form
from dotenv import load_dotenv

from api.error_handlers import register_error_handlers
from models import EmbeddingMetadata, EmbeddingRecord
from services.embedding_service import get_embedding_service
from services.errors import EmbeddingFailure, InvalidInput
from services.migration_service import MigrationService, get_migration_service
from services.similarity_service import SimilarityService, get_similarity_service
from utils.anonymizer import anonymize_text

load_dotenv()


def create_ingest_app() -> FastAPI:
    ingest_app = FastAPI()
    register_error_handlers(ingest_app)

    @ingest_app.post("/ingest_messages")
    async def ingest_messages(
        limit: int = Form(100),
        migration_service: MigrationService = Depends(get_migration_service),
    ):
        """Embed các messages chưa xử lý trong MongoDB vào ChromaDB"""
        if limit <= 0:
            raise InvalidInput(f"limit must be positive, got {limit}")
        return await migration_service.migrate(limit=limit)

    @ingest_app.post("/ingest_text")
    async def ingest_text(
        text: str = Form(""),
        message_id: str = Form(...),
        conversation_id: str = Form(...),
        chat_name: Optional[str] = Form(None),
        is_business_response: bool = Form(True),
        embedding_service=Depends(get_embedding_service),
        similarity_service: SimilarityService = Depends(get_similarity_service),
    ):
        """Thêm một message đơn lẻ vào index (ghi đè nếu message_id đã tồn tại)"""
        if not text.strip():
            raise InvalidInput("text is required")
        document = anonymize_text(text.strip())
        try:
            vector = await asyncio.to_thread(embedding_service.encode_single, document)
        except Exception as e:
            raise EmbeddingFailure(f"Error embedding text: {e}") from e

        record = EmbeddingRecord(
            id=message_id,
            vector=vector,
            document_text=document,
            metadata=EmbeddingMetadata(
                conversation_id=conversation_id,
                chat_name=chat_name,
                is_business_response=is_business_response,
                timestamp=datetime.now(timezone.utc).isoformat(),
                content_length=len(text),
            ),
        )
        await similarity_service.add_message(record)
        return {
            "status": "success",
            "collection": similarity_service.collection_name,
            "id": message_id,
        }

    @ingest_app.delete("/clean_collection")
    async def clean_collection(similarity_service: SimilarityService = Depends(get_similarity_service)):
        """
        Xóa tất cả documents trong collection ChromaDB.
        Dùng để clean collection trước khi embedding lại, tránh duplicate.
        """
        deleted = await similarity_service.clear_collection()
        return {
            "status": "success",
            "collection": similarity_service.collection_name,
            "deleted_count": deleted,
        }

    @ingest_app.get("/stats")
    async def migration_stats(migration_service: MigrationService = Depends(get_migration_service)):
        return await migration_service.get_migration_stats()

    return ingest_app
