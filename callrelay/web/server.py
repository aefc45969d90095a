"""
FastAPI server for the call relay.

Hosts the ``/ws/call`` relay endpoint and the REST API the client uses
for its end-of-call side effects and the admin views.

Endpoints:
    WebSocket:
        /ws/call                     - Call session relay (JSON frames)

    API - Call logs:
        POST  /api/calls             - Persist a completed call
        GET   /api/calls             - List call logs, newest first
        GET   /api/calls/{id}        - Get one call log
        PATCH /api/calls/{id}        - Partial update of a call log
        GET   /api/stats             - Call totals and lead capture rate

    API - Leads:
        POST  /api/leads             - Store captured contact details
        GET   /api/leads             - List leads, newest first
        GET   /api/leads/{id}        - Get one lead

    API - Notifications:
        POST  /api/notify            - Email the transcript of a finished call

    Health:
        GET   /api/health            - Liveness probe with active session count
"""

import uuid as _uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Type, TypeVar

import structlog
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from callrelay.config import RelaySettings
from callrelay.notifications import NotificationManager, NotifyRequest
from callrelay.relay import LivenessSweeper, SessionProtocolHandler, WebSocketConnection
from callrelay.session.store import SessionStore
from callrelay.storage import CallStorage, StorageError, get_storage
from callrelay.storage.models import CallLogCreate, CallLogUpdate, LeadCreate

logger = structlog.get_logger("server")

ModelT = TypeVar("ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(_uuid.uuid4())[:12]
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, details: Optional[list] = None) -> JSONResponse:
    content = {"error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _validation_details(exc: ValidationError) -> List[dict]:
    return [
        {"path": list(err["loc"]), "message": err["msg"], "code": err["type"]}
        for err in exc.errors()
    ]


class _BadRequest(Exception):
    def __init__(self, response: JSONResponse):
        self.response = response


async def _read_json(request: Request, label: str):
    try:
        return await request.json()
    except (ValueError, UnicodeDecodeError):
        raise _BadRequest(_error(400, f"Invalid {label} data", [{"path": [], "message": "Body is not valid JSON", "code": "json_invalid"}]))


async def _parse_body(request: Request, model: Type[ModelT], label: str) -> ModelT:
    data = await _read_json(request, label)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.info("request_validation_failed", path=request.url.path, errors=e.error_count())
        raise _BadRequest(_error(400, f"Invalid {label} data", _validation_details(e)))


def _storage(request: Request) -> CallStorage:
    return request.app.state.storage


# ---------------------------------------------------------------------------
# WebSocket relay
# ---------------------------------------------------------------------------

router = APIRouter()


@router.websocket("/ws/call")
async def call_relay(websocket: WebSocket):
    """One handler per socket; the session outlives the socket for the grace period."""
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    handler = SessionProtocolHandler(
        store=websocket.app.state.store,
        connection=connection,
        sweeper=websocket.app.state.sweeper,
    )
    logger.info("ws_connected", connection_id=connection.connection_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            # Text and binary frames both carry JSON
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            await handler.handle_raw(raw)
    except WebSocketDisconnect as e:
        logger.info(
            "ws_disconnected",
            connection_id=connection.connection_id,
            session_id=handler.session_id,
            code=e.code,
        )
    except Exception as e:
        logger.error(
            "ws_handler_error",
            connection_id=connection.connection_id,
            session_id=handler.session_id,
            error=str(e),
            error_type=type(e).__name__,
        )
    finally:
        handler.on_close()


# ---------------------------------------------------------------------------
# Call logs
# ---------------------------------------------------------------------------


@router.post("/api/calls")
async def create_call_log(request: Request):
    try:
        data = await _parse_body(request, CallLogCreate, "call log")
    except _BadRequest as e:
        return e.response
    try:
        call_log = await _storage(request).create_call_log(data)
    except StorageError:
        return _error(500, "Failed to create call log")
    return JSONResponse(status_code=201, content=call_log.to_json())


@router.get("/api/calls")
async def list_call_logs(request: Request):
    try:
        call_logs = await _storage(request).get_call_logs()
    except StorageError:
        return _error(500, "Failed to fetch call logs")
    return [c.to_json() for c in call_logs]


@router.get("/api/calls/{call_id}")
async def get_call_log(call_id: str, request: Request):
    try:
        call_log = await _storage(request).get_call_log(call_id)
    except StorageError:
        return _error(500, "Failed to fetch call log")
    if call_log is None:
        return _error(404, "Call log not found")
    return call_log.to_json()


@router.patch("/api/calls/{call_id}")
async def update_call_log(call_id: str, request: Request):
    try:
        updates = await _parse_body(request, CallLogUpdate, "call log")
    except _BadRequest as e:
        return e.response
    try:
        call_log = await _storage(request).update_call_log(call_id, updates)
    except StorageError:
        return _error(500, "Failed to update call log")
    if call_log is None:
        return _error(404, "Call log not found")
    return call_log.to_json()


@router.get("/api/stats")
async def get_stats(request: Request):
    storage = _storage(request)
    try:
        stats = await storage.get_call_stats()
        leads = await storage.get_leads()
    except StorageError:
        return _error(500, "Failed to fetch stats")
    total_leads = len(leads)
    return {
        **stats.to_json(),
        "totalLeads": total_leads,
        "leadCaptureRate": round(total_leads / stats.total_calls * 100) if stats.total_calls else 0,
    }


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


@router.post("/api/leads")
async def create_lead(request: Request):
    try:
        data = await _parse_body(request, LeadCreate, "lead")
    except _BadRequest as e:
        return e.response
    try:
        lead = await _storage(request).create_lead(data)
    except StorageError:
        return _error(500, "Failed to create lead")
    return JSONResponse(status_code=201, content=lead.to_json())


@router.get("/api/leads")
async def list_leads(request: Request):
    try:
        leads = await _storage(request).get_leads()
    except StorageError:
        return _error(500, "Failed to fetch leads")
    return [lead.to_json() for lead in leads]


@router.get("/api/leads/{lead_id}")
async def get_lead(lead_id: str, request: Request):
    try:
        lead = await _storage(request).get_lead(lead_id)
    except StorageError:
        return _error(500, "Failed to fetch lead")
    if lead is None:
        return _error(404, "Lead not found")
    return lead.to_json()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.post("/api/notify")
async def notify(request: Request):
    try:
        data = await _read_json(request, "notification")
    except _BadRequest as e:
        return e.response

    transcript = data.get("transcript") if isinstance(data, dict) else None
    if not isinstance(transcript, str) or not transcript.strip():
        return _error(400, "No transcript provided")

    try:
        payload = NotifyRequest.model_validate(data)
    except ValidationError as e:
        return _error(400, "Invalid notification data", _validation_details(e))

    notifier: NotificationManager = request.app.state.notifier
    if not notifier.enabled:
        logger.info("notify_skipped", reason="email_disabled", duration=payload.duration)
        return {"success": False, "message": "Email notifications are disabled"}

    if not await notifier.send_transcript_notification(payload):
        return _error(500, "Failed to send notification")
    return {"success": True, "message": "Notification sent successfully"}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/api/health")
async def health(request: Request):
    return {
        "status": "ok",
        "active_sessions": len(request.app.state.store),
        "sweeper_running": request.app.state.sweeper.running,
    }


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[RelaySettings] = None,
    store: Optional[SessionStore] = None,
    storage: Optional[CallStorage] = None,
    notifier: Optional[NotificationManager] = None,
) -> FastAPI:
    """Build the relay app; every collaborator can be injected."""
    settings = settings or RelaySettings.from_env()
    store = store if store is not None else SessionStore()
    storage = storage if storage is not None else get_storage(settings.database_url)
    notifier = notifier if notifier is not None else NotificationManager(settings.notifications_config)
    sweeper = LivenessSweeper(
        store,
        interval=settings.keep_alive_interval,
        stale_after=settings.session_timeout,
        grace_period=settings.reconnect_grace_period,
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI):
        # --- Startup ---
        sweeper.start()
        logger.info("server_started", storage=type(storage).__name__, email_enabled=notifier.enabled)

        yield  # --- App running ---

        # --- Shutdown ---
        await sweeper.stop()
        try:
            storage.close()
        except Exception as e:
            logger.warning("shutdown_close_failed", error=str(e))
        logger.info("server_shutdown_complete", active_sessions=len(store))

    application = FastAPI(title="Call Relay", lifespan=_lifespan)
    application.state.settings = settings
    application.state.store = store
    application.state.storage = storage
    application.state.notifier = notifier
    application.state.sweeper = sweeper

    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(SecurityHeadersMiddleware)
    application.include_router(router)
    return application
