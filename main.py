import os
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, configure_logging
from errors import WallError
from event_log import EventLog
from moderation import ModerationEngine
from realtime import ConnectionManager
from schemas import MessageStatus
from sections import SectionRegistry
from store import MessageStore

logger = logging.getLogger(__name__)


# -------------------- Dependencies --------------------

def get_engine(request: Request) -> ModerationEngine:
    return request.app.state.engine


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.manager


def require_admin_key(request: Request, key: Optional[str] = Query(None)) -> None:
    expected = request.app.state.settings.admin_key
    if expected and key != expected:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def parse_refs(payload: Dict[str, Any]) -> List[Tuple[str, Any]]:
    ids = payload.get("messageIds") if isinstance(payload, dict) else None
    if not isinstance(ids, list) or not ids:
        raise HTTPException(status_code=400, detail="Invalid message list")
    return [
        (ref.get("section"), ref.get("id"))
        for ref in ids
        if isinstance(ref, dict)
    ]


# -------------------- Admin HTTP Endpoints --------------------

admin = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin_key)])


@admin.get("/messages")
async def list_messages(engine: ModerationEngine = Depends(get_engine)):
    with engine.lock:
        return [msg.to_wire(section) for section, msg in engine.store.all_messages()]


@admin.get("/messages/pending")
async def pending_messages(engine: ModerationEngine = Depends(get_engine)):
    with engine.lock:
        pending = [
            msg.to_wire(section)
            for section, msg in engine.store.all_messages()
            if msg.status == MessageStatus.pending
        ]
    return {"count": len(pending), "messages": pending}


@admin.get("/status")
async def status(
    engine: ModerationEngine = Depends(get_engine),
    manager: ConnectionManager = Depends(get_manager),
):
    with engine.lock:
        by_section = engine.store.counts()
        last = engine.log.last_activity()
    return {
        "activeConnections": manager.active_connections,
        "totalMessages": sum(by_section.values()),
        "messagesBySection": by_section,
        "lastActivity": last.isoformat() if last else None,
    }


@admin.get("/logs")
async def logs(limit: Optional[str] = Query(None), engine: ModerationEngine = Depends(get_engine)):
    try:
        n = int(limit) if limit is not None else 10
    except ValueError:
        n = 10
    if n <= 0:
        n = 10
    with engine.lock:
        entries = engine.log.recent(n)
    return [e.model_dump(mode="json") for e in entries]


@admin.delete("/message/{section}/{message_id}")
async def delete_message(section: str, message_id: str, engine: ModerationEngine = Depends(get_engine)):
    engine.delete(section, message_id)
    return {"success": True, "message": "Message deleted"}


@admin.delete("/messages/{section}")
async def clear_section(section: str, engine: ModerationEngine = Depends(get_engine)):
    count = engine.clear_section(section)
    return {"success": True, "message": f"{count} messages deleted", "count": count}


@admin.post("/messages/clear-all")
async def clear_all(engine: ModerationEngine = Depends(get_engine)):
    count = engine.clear_all()
    return {"success": True, "message": f"{count} messages deleted", "count": count}


@admin.post("/message/{section}/{message_id}/approve")
async def approve_message(section: str, message_id: str, engine: ModerationEngine = Depends(get_engine)):
    engine.approve(section, message_id)
    return {"success": True, "message": "Message approved"}


@admin.post("/message/{section}/{message_id}/reject")
async def reject_message(section: str, message_id: str, engine: ModerationEngine = Depends(get_engine)):
    engine.reject(section, message_id)
    return {"success": True, "message": "Message rejected"}


@admin.post("/messages/approve-bulk")
async def approve_bulk(payload: Dict[str, Any] = Body(...), engine: ModerationEngine = Depends(get_engine)):
    count = engine.bulk_approve(parse_refs(payload))
    return {"success": True, "message": f"{count} messages approved", "count": count}


@admin.post("/messages/reject-bulk")
async def reject_bulk(payload: Dict[str, Any] = Body(...), engine: ModerationEngine = Depends(get_engine)):
    count = engine.bulk_reject(parse_refs(payload))
    return {"success": True, "message": f"{count} messages rejected", "count": count}


# -------------------- Public Endpoints --------------------

public = APIRouter()


@public.get("/")
def read_root():
    return {"message": "Message Wall Backend Running"}


@public.get("/health")
def health():
    return {"status": "ok"}


@public.get("/api/sections")
def list_sections(request: Request):
    return request.app.state.registry.describe()


# -------------------- WebSocket Endpoint --------------------

@public.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.manager
    engine: ModerationEngine = websocket.app.state.engine
    sub = await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(data, dict):
                continue
            evt = data.get("type")

            if evt == "new-message":
                try:
                    engine.submit(data.get("section"), data.get("author"), data.get("text"))
                except WallError as e:
                    logger.debug("dropped submission from %s: %s", sub.id, e)
            else:
                sub.offer({"type": "error", "error": f"unknown event {evt}"})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("ws_error for %s: %s", sub.id, e)
        try:
            await websocket.close(code=1011)
        except Exception as close_error:
            logger.debug("close after ws_error failed: %s", close_error)
    finally:
        manager.disconnect(sub)


# -------------------- Application --------------------

async def wall_error_handler(request: Request, exc: WallError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path.endswith("-bulk"):
        return JSONResponse(status_code=400, content={"error": "Invalid message list"})
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    registry = SectionRegistry()
    store = MessageStore(
        registry,
        capacity=settings.section_capacity,
        text_max_length=settings.text_max_length,
        author_max_length=settings.author_max_length,
        default_author=settings.default_author,
    )
    engine = ModerationEngine(store, EventLog(settings.log_capacity))
    manager = ConnectionManager(engine, queue_size=settings.client_queue_size)

    app = FastAPI(title="Message Wall Backend")
    app.state.settings = settings
    app.state.registry = registry
    app.state.engine = engine
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WallError, wall_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(public)
    app.include_router(admin)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", app.state.settings.port))
    uvicorn.run(app, host=app.state.settings.host, port=port)
