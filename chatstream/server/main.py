"""
MODULE OVERVIEW:
The FastAPI application factory.

WHAT IS HAPPENING HERE:
`create_app()` wires the collaborators (conversation store, LLM backend,
cost estimator, CSRF manager) onto `app.state`, where every route reads
them. Tests build their own app with a fake backend; `runner.py server`
serves the module-level `app` with the scripted demo backend.
The `lifespan` finally block cancels any stream producer still running,
so shutting down never leaves a turn half-written in memory.
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from chatstream.server.backends import ChatBackend, CostEstimator, ScriptedChatBackend
from chatstream.server.chat_service import ChatService
from chatstream.server.csrf import CsrfTokenManager
from chatstream.server.emitter import stream_tasks
from chatstream.server.middleware import TimingMiddleware
from chatstream.server.store import ConversationStore
from chatstream.shared.config import settings

from chatstream.server.routes import (
    chat,
    conversations,
    csrf,
    estimate_cost,
    memory,
    reset,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("Chat stream server starting up...")
    yield

    # SHUTDOWN
    logger.info(f"Server shutting down. Cancelling {len(stream_tasks)} open streams...")
    pending = list(stream_tasks)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    logger.info("Shutdown complete.")


def create_app(
    backend: ChatBackend | None = None,
    store: ConversationStore | None = None,
    csrf_enabled: bool = settings.CSRF_ENABLED,
    padding_bytes: int = settings.PADDING_BYTES,
    debug: bool = settings.DEBUG,
) -> FastAPI:
    app = FastAPI(
        title="Chat Stream",
        description="Streamed conversational answers over NDJSON",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.backend = backend or ScriptedChatBackend()
    app.state.store = store or ConversationStore()
    app.state.estimator = CostEstimator()
    app.state.csrf = CsrfTokenManager(enabled=csrf_enabled)
    app.state.padding_bytes = padding_bytes
    app.state.chat_service = ChatService(app.state.backend, app.state.store, app.state.estimator, debug=debug)

    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router, prefix=settings.API_PREFIX, tags=["Chat"])
    app.include_router(csrf.router, prefix=settings.API_PREFIX, tags=["Chat"])
    app.include_router(reset.router, prefix=settings.API_PREFIX, tags=["Chat"])
    app.include_router(estimate_cost.router, prefix=settings.API_PREFIX, tags=["Chat"])
    app.include_router(memory.router, prefix=settings.API_PREFIX, tags=["Memory"])
    app.include_router(conversations.router, prefix=settings.API_PREFIX, tags=["Conversations"])

    @app.get("/healthz", tags=["Ops"])
    async def health_check():
        return {"status": "ok"}

    return app


app = create_app()
