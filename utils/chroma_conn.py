import chromadb
import os
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()


class ChromaConnection:
    """
    Owns the chromadb client handle.
    Dùng HttpClient khi có CHROMA_HOST (chroma chạy như service riêng),
    nếu không thì PersistentClient trên đĩa.
    """

    def __init__(self):
        chroma_host = os.getenv("CHROMA_HOST")
        if chroma_host:
            chroma_port = int(os.getenv("CHROMA_PORT", 8000))
            self.client = chromadb.HttpClient(host=chroma_host, port=chroma_port)
            self.location = f"http://{chroma_host}:{chroma_port}"
        else:
            self.location = os.getenv("CHROMADB_PATH", "./chroma_db")
            self.client = chromadb.PersistentClient(path=self.location)
        print(f"[Chroma] Client initialized: {self.location}")

    def get_client(self):
        return self.client

    def check_connection(self) -> bool:
        try:
            self.client.heartbeat()
            return True
        except Exception as e:
            print(f"[Chroma] Heartbeat failed: {e}")
            return False


@lru_cache(maxsize=1)
def get_chroma_connection() -> ChromaConnection:
    return ChromaConnection()
