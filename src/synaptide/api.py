"""HTTP routes."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from groq import AsyncGroq
from pydantic import BaseModel, Field

from .config import AppConfig, load_config
from .errors import StorageError, ValidationError
from .llm import GroqPreferenceAnalyzer, GroqResponseGenerator
from .logging import JSONLLogger, configure_logger
from .service import ChatService
from .storage import Storage, open_storage

logger = logging.getLogger(__name__)


class CreateUserRequest(BaseModel):
    name: str | None = Field(None, description="Display name, trimmed before lookup")


class SendMessageRequest(BaseModel):
    content: str | None = Field(None, description="The user's message")


def build_service(
    config: AppConfig,
    storage: Storage,
    event_logger: JSONLLogger | None = None,
) -> ChatService:
    """Wire a ChatService with Groq collaborators."""
    client = AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
    return ChatService(
        storage,
        generator=GroqResponseGenerator(
            client,
            model=config.chat.model,
            temperature=config.chat.temperature,
            max_tokens=config.chat.max_tokens,
        ),
        analyzer=GroqPreferenceAnalyzer(
            client,
            model=config.chat.model,
            temperature=config.chat.analysis_temperature,
        ),
        config=config.chat,
        event_logger=event_logger,
    )


def get_service(request: Request) -> ChatService:
    return request.app.state.service


def create_app(
    config: AppConfig | None = None,
    service: ChatService | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        config: App configuration. Loaded from file and env if None.
        service: A ready ChatService. When None, storage is opened and the
            service wired during start-up and closed on shutdown.
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_storage: Storage | None = None
        if service is None:
            event_logger = configure_logger(config.log_dir)
            owned_storage = await open_storage(config.storage, event_logger)
            app.state.service = build_service(config, owned_storage, event_logger)
        else:
            app.state.service = service

        logger.info("Serving with %s storage", app.state.service.storage.backend)
        try:
            yield
        finally:
            await app.state.service.drain()
            if owned_storage is not None:
                await owned_storage.close()

    app = FastAPI(title="Synaptide", version="0.1.0", lifespan=lifespan)

    if config.is_development:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": "Internal storage error"})

    @app.post("/api/users", status_code=201)
    async def create_user(
        body: CreateUserRequest, chat: ChatService = Depends(get_service)
    ) -> dict[str, Any]:
        user = await chat.register(body.name or "")
        logger.info("User %s resolved to %s", user.name, user.id)
        return user.to_dict()

    @app.get("/api/users")
    async def find_user(name: str | None = None, chat: ChatService = Depends(get_service)):
        user = await chat.find_user(name or "")
        if user is None:
            return JSONResponse(status_code=404, content={"message": "User not found"})
        return user.to_dict()

    @app.get("/api/users/{user_id}/messages")
    async def list_messages(
        user_id: str, chat: ChatService = Depends(get_service)
    ) -> list[dict[str, Any]]:
        return [message.to_dict() for message in await chat.history(user_id)]

    @app.post("/api/users/{user_id}/messages", status_code=201)
    async def send_message(
        user_id: str,
        body: SendMessageRequest,
        chat: ChatService = Depends(get_service),
    ) -> dict[str, Any]:
        reply = await chat.send_message(user_id, body.content or "")
        return reply.to_dict()

    @app.delete("/api/users/{user_id}/messages")
    async def clear_messages(
        user_id: str, chat: ChatService = Depends(get_service)
    ) -> dict[str, Any]:
        await chat.clear(user_id)
        return {"message": "Chat history cleared"}

    @app.get("/api/users/{user_id}/profile")
    async def get_profile(
        user_id: str, chat: ChatService = Depends(get_service)
    ) -> dict[str, Any]:
        return (await chat.profile(user_id)).to_dict()

    @app.get("/health")
    async def health(chat: ChatService = Depends(get_service)) -> dict[str, str]:
        return {"status": "ok", "storage": chat.storage.backend}

    return app
