"""FastAPI application exposing the message repository to the host process."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import load_config
from .errors import BackendError, InvalidMessageError, OperationTimeoutError
from .repository import MessageRepository
from .service import StorageService


# -----------------------------
# Pydantic request/response
# -----------------------------
class MessageIn(BaseModel):
    """A message as handed over by the transport layer. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: Union[str, int]
    receiver: Optional[str] = None
    sender: Optional[Union[str, Dict[str, Any]]] = None
    state: Optional[str] = None
    dispositionState: Optional[str] = None
    timestamp: Optional[datetime] = None
    direction: Optional[str] = None


class StateUpdateIn(BaseModel):
    messageId: Union[str, int]
    state: str = Field(..., min_length=1)


class DispositionIn(BaseModel):
    id: Union[str, int]
    state: str = Field(..., min_length=1)


class LogResponse(BaseModel):
    stored: bool
    messages: Optional[List[str]] = None


# -----------------------------
# Utilities
# -----------------------------
def _message_dict(model: MessageIn) -> Dict[str, Any]:
    return model.model_dump(exclude_none=True)


def _make_repository(cfg: Dict[str, Any]) -> MessageRepository:
    storage = cfg.get("storage", {})
    service = StorageService(
        str(storage.get("data_dir", "data")),
        db_name=str(storage.get("db_name", "messages")),
    )
    timeout = cfg.get("queue", {}).get("task_timeout")
    repository = MessageRepository(
        service,
        page_size=int(cfg.get("pagination", {}).get("page_size", 30)),
        task_timeout=float(timeout) if timeout is not None else None,
    )
    repository.initialize(
        str(storage.get("account", "default")),
        use_bridged=str(storage.get("backend", "direct")).lower() == "bridged",
    )
    return repository


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    repository: Optional[MessageRepository] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    repository = repository or _make_repository(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await repository.queue.shutdown()

    app = FastAPI(title="Message Store", version="0.1.0", lifespan=lifespan)
    app.state.repository = repository
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BackendError)
    async def backend_error(request: Request, exc: BackendError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(OperationTimeoutError)
    async def timeout_error(request: Request, exc: OperationTimeoutError) -> JSONResponse:
        return JSONResponse(status_code=504, content={"detail": str(exc)})

    @app.exception_handler(InvalidMessageError)
    async def invalid_message(request: Request, exc: InvalidMessageError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> Dict[str, Any]:
        store = repository.store
        return {
            "ok": True,
            "backend": store.kind if store is not None else None,
            "indexed": len(repository.index),
            "pending": repository.queue.pending,
        }

    @app.get("/messages")
    async def last_messages() -> Dict[str, Any]:
        return await repository.load_last_messages()

    @app.post("/messages", response_model=LogResponse)
    async def add_message(message: MessageIn):
        log = await repository.add(_message_dict(message))
        return LogResponse(stored=log is not None, messages=log)

    @app.post("/messages/remove", response_model=LogResponse)
    async def remove_message(message: MessageIn):
        log = await repository.remove_message(_message_dict(message))
        return LogResponse(stored=True, messages=log)

    @app.post("/messages/state", response_model=LogResponse)
    async def update_state(update: StateUpdateIn):
        log = await repository.update(update.model_dump())
        return LogResponse(stored=log is not None, messages=log)

    @app.post("/messages/disposition", response_model=LogResponse)
    async def update_disposition(update: DispositionIn):
        log = await repository.update_disposition(update.id, update.state)
        return LogResponse(stored=log is not None, messages=log)

    @app.delete("/conversations/{key}")
    async def remove_conversation(key: str) -> Dict[str, Any]:
        if not key.strip():
            raise HTTPException(status_code=400, detail="Conversation key cannot be empty.")
        await repository.remove_conversation(key)
        return {"ok": True}

    @app.get("/conversations/{key}/more")
    async def load_more(key: str) -> Dict[str, Any]:
        messages = await repository.load_more_messages(key)
        return {"messages": messages or [], "has_more": await repository.has_more(key)}

    @app.get("/conversations/{key}/has-more")
    async def has_more(key: str) -> Dict[str, Any]:
        return {"has_more": await repository.has_more(key)}

    @app.post("/index/rebuild")
    async def rebuild_index() -> Dict[str, Any]:
        snapshot = await repository.update_id_map()
        return {"index": {str(k): v for k, v in snapshot.items()}}

    return app
