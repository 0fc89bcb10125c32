"""FastAPI application entry point."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatstream.db.database import close_database, init_database
from chatstream.errors import ChatError

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    db_path = os.getenv("DATABASE_PATH", "./data/chat.db")
    await init_database(db_path)
    logger.info(f"Database ready at {db_path}")

    yield

    await close_database()


app = FastAPI(
    title="chatstream",
    description="Resumable streaming chat sessions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Render structured errors as ``{"code", "error"}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report body validation failures with the same error shape."""
    error = ChatError("bad_request:api")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from chatstream.api import chat, providers  # noqa: E402

app.include_router(chat.router, prefix="/api", tags=["chat"])
app.include_router(providers.router, prefix="/api", tags=["providers"])
