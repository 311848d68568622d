import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pymongo.errors import PyMongoError

from .Ingest.main import create_ingest_app
from .error_handlers import register_error_handlers
from .relay.relay import router as relay_router
from .suggestions.suggestions import router as suggestions_router
from services.broadcast_service import BroadcastService, get_broadcast_service
from services.message_store import get_message_store
from services.similarity_service import SimilarityService, get_similarity_service
from utils.chroma_conn import get_chroma_connection
from utils.mongodb_conn import get_mongodb_connection
from utils.redis_conn import get_redis_connection

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Dùng override nếu có (tests thay MessageStore bằng fake)
    message_store = app.dependency_overrides.get(get_message_store, get_message_store)()
    try:
        await message_store.ensure_indexes()
        print("[API] MongoDB indexes ready")
    except PyMongoError as e:
        # MongoDB chưa sẵn sàng: app vẫn chạy, /health báo lỗi
        print(f"[API] Could not create MongoDB indexes: {e}")
    yield
    message_store.close()


app = FastAPI(title="WhatsApp Reply Assistant API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

# Mount ingest thành sub-app
ingest_app = create_ingest_app()
app.mount("/ingest-service", ingest_app)

app.include_router(suggestions_router)
app.include_router(relay_router)


@app.get("/health")
async def health():
    if not await get_mongodb_connection().check_connection():
        return {"status": "error", "message": "MongoDB connection failed"}
    if not get_redis_connection().check_connection():
        return {"status": "error", "message": "Redis connection failed"}
    if not get_chroma_connection().check_connection():
        return {"status": "error", "message": "ChromaDB connection failed"}
    return {"status": "ok", "message": "WhatsApp Reply Assistant is running"}


@app.get("/api/status")
async def status(broadcaster: BroadcastService = Depends(get_broadcast_service)):
    return {
        "backend": "running",
        "websocket": "running",
        "connections": broadcaster.connection_count,
        "chromadb": os.getenv("CHROMA_HOST") or os.getenv("CHROMADB_PATH", "./chroma_db"),
        "n8n_webhook_url": os.getenv("N8N_WEBHOOK_URL"),
        "mongodb_database": os.getenv("MONGODB_DATABASE", "whatsapp_assistant"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/chroma/stats")
async def chroma_stats(similarity_service: SimilarityService = Depends(get_similarity_service)):
    return await similarity_service.get_collection_stats()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("API_HOST", "0.0.0.0"), port=int(os.getenv("API_PORT", 8000)))
