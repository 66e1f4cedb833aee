"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import FirebaseTokenVerifier
from .chat.attachments import AttachmentResolver
from .chat.history import HistoryCompactor
from .chat.intent_router import IntentRouter
from .chat.orchestrator import ChatOrchestrator
from .chat.variants import Variant, parse_variant
from .config import PROJECT_ROOT, Settings, get_settings
from .gemini import GeminiClient
from .repository import ConversationRepository
from .routers.chat import router as chat_router
from .routers.conversations import router as conversations_router
from .routers.uploads import router as uploads_router
from .services.conversation_cleanup import ConversationCleanupReactor
from .services.dual_sink import DualSinkUploader
from .services.gcs import ObjectStorage
from .services.images import ImageFetcher
from .services.suggestions import SuggestionService

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("chat_gateway").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet transport chatter unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("google").setLevel(logging.WARNING)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def _router_fallback(settings: Settings) -> Variant:
    variant = parse_variant(settings.router_fallback_variant)
    if variant is None:
        logger.warning(
            "Unknown ROUTER_FALLBACK_VARIANT %r; using %s",
            settings.router_fallback_variant,
            Variant.FLASH.value,
        )
        return Variant.FLASH
    return variant


def create_app(settings: Settings | None = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()

    gemini_client = GeminiClient(settings)
    object_storage = ObjectStorage(settings)
    if not object_storage.is_available():
        logger.warning(
            "GCS credentials not found; generated images will not get durable URLs"
        )
    uploader = DualSinkUploader(object_storage, gemini_client)

    image_fetcher = ImageFetcher(
        httpx.AsyncClient(follow_redirects=True),
        allowed_hosts=settings.image_download_allowed_hosts,
        timeout_seconds=float(settings.image_download_timeout_seconds),
        max_bytes=settings.image_download_max_bytes,
    )

    orchestrator = ChatOrchestrator(
        gemini_client,
        router=IntentRouter(
            gemini_client,
            model=settings.router_model,
            fallback=_router_fallback(settings),
        ),
        compactor=HistoryCompactor(
            image_fetcher,
            max_reembedded_images=settings.max_reembedded_images,
        ),
        resolver=AttachmentResolver(max_inline_bytes=settings.inline_payload_max_bytes),
        uploader=uploader,
        suggestions=SuggestionService(gemini_client, model=settings.suggestions_model),
    )

    repository = ConversationRepository(
        _resolve_under(PROJECT_ROOT, settings.chat_database_path)
    )
    cleanup_reactor = ConversationCleanupReactor(repository, object_storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await repository.initialize()
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(uploader.drain(), timeout=30.0)
            except asyncio.TimeoutError:
                logger.warning("Upload drain timed out during shutdown")
            # Add timeout to prevent hanging during shutdown (especially in tests)
            try:
                await asyncio.wait_for(repository.close(), timeout=10.0)
                await asyncio.wait_for(gemini_client.aclose(), timeout=10.0)
                await asyncio.wait_for(image_fetcher.aclose(), timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Shutdown timed out after 10s")
            except Exception as exc:
                logger.warning("Error during shutdown: %s", exc)

    app = FastAPI(
        title="Chat Gateway",
        version="0.1.0",
        description="Streaming multimodal chat backend for the Gemini API.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.gemini_client = gemini_client
    app.state.object_storage = object_storage
    app.state.dual_sink_uploader = uploader
    app.state.chat_orchestrator = orchestrator
    app.state.conversation_repository = repository
    app.state.cleanup_reactor = cleanup_reactor
    app.state.token_verifier = FirebaseTokenVerifier(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(uploads_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
