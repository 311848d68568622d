import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.errors import SuggestionError


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SuggestionError)
    async def suggestion_error_handler(request: Request, exc: SuggestionError):
        print(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
        details = None
        if os.getenv("APP_ENV", "development") == "development" and exc.__cause__ is not None:
            details = f"{type(exc.__cause__).__name__}: {exc.__cause__}"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code, "details": details},
        )
