"""FastAPI application: HTTP surface for the voice booking assistant.

Endpoints:

  GET  /health                              Health check
  GET  /voice/functions                     Function schemas for the agent platform
  POST /voice/functions/{name}              Invoke a voice function (always 200 + envelope)
  POST /conversation/{session_id}/messages  One conversational turn
  GET  /api/bookings/follow-ups             Bookings needing manual follow-up (admin)
  GET  /api/bookings/{booking_id}           Booking with its sync flags (admin)
  POST /api/bookings/{booking_id}/resync    Retry flagged sync targets (admin)

Voice endpoints take the VOICE_API_KEY bearer token, admin endpoints the
ADMIN_API_KEY one (see ``booking_assistant.auth``).
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import json
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

# Configure root logger early so all booking_assistant loggers have a
# handler when run via `uvicorn booking_assistant.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from booking_assistant import __version__
from booking_assistant.auth import require_admin_token, require_voice_token
from booking_assistant.config import settings
from booking_assistant.container import Services, build_services
from booking_assistant.errors import NotFoundError

log = logging.getLogger("booking_assistant.app")

_START_TIME = time.time()

_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


def _validate_id(value: str, what: str) -> None:
    if not _ID_PATTERN.match(value):
        raise HTTPException(status_code=400, detail=f"Invalid {what}.")


class MessageIn(BaseModel):
    text: str


def _function_args(body: Any) -> dict[str, Any]:
    """Accept raw arguments or a platform wrapper ``{"args": {...}}``."""
    if not isinstance(body, dict):
        return {}
    wrapped = body.get("args")
    if isinstance(wrapped, dict):
        return wrapped
    return body


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if services is None:
        for warning in settings.validate_startup():
            log.warning(warning)
        services = build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        log.info("Shutting down: waiting for %d sync task(s)", services.synchronizer.pending)
        await services.aclose()

    app = FastAPI(
        title="Voice Booking Assistant",
        description="Voice-driven appointment booking with calendar, email and CRM sync",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check: confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "pending_syncs": services.synchronizer.pending,
            "integrations": {
                "calendar": services.calendar.provider is not None,
                "email": services.notifications is not None,
                "crm": services.crm is not None,
            },
        })

    # ── Voice functions ────────────────────────────────────────

    @app.get("/voice/functions", dependencies=[Depends(require_voice_token)])
    async def list_functions() -> JSONResponse:
        return JSONResponse({"functions": services.voice_functions.function_schemas()})

    @app.post("/voice/functions/{name}", dependencies=[Depends(require_voice_token)])
    async def call_function(name: str, request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            body = {}
        result = await services.voice_functions.call(name, _function_args(body))
        return JSONResponse(result.as_payload())

    # ── Conversation ───────────────────────────────────────────

    @app.post(
        "/conversation/{session_id}/messages",
        dependencies=[Depends(require_voice_token)],
    )
    async def conversation_message(session_id: str, message: MessageIn) -> JSONResponse:
        _validate_id(session_id, "session id")
        reply = await services.conversations.process_message(session_id, message.text)
        return JSONResponse({
            "response": reply.response,
            "context": reply.context.model_dump(mode="json"),
        })

    # ── Admin ──────────────────────────────────────────────────

    @app.get("/api/bookings/follow-ups", dependencies=[Depends(require_admin_token)])
    async def follow_ups() -> JSONResponse:
        bookings = await services.orchestrator.list_follow_ups()
        return JSONResponse({"bookings": [b.model_dump(mode="json") for b in bookings]})

    @app.get("/api/bookings/{booking_id}", dependencies=[Depends(require_admin_token)])
    async def get_booking(booking_id: str) -> JSONResponse:
        _validate_id(booking_id, "booking id")
        try:
            booking = await services.orchestrator.get_booking_by_id(booking_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=exc.message)
        return JSONResponse(booking.model_dump(mode="json"))

    @app.post(
        "/api/bookings/{booking_id}/resync",
        dependencies=[Depends(require_admin_token)],
    )
    async def resync(booking_id: str) -> JSONResponse:
        _validate_id(booking_id, "booking id")
        try:
            booking = await services.orchestrator.resync_booking(booking_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=exc.message)
        return JSONResponse({
            "booking_id": booking.id,
            "resync_scheduled": booking.needs_follow_up,
        })

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "booking_assistant.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
