"""
FastAPI front door for the registry GC listener.

Routes:
  POST /events      registry notification endpoint; any "delete" event
                    schedules a debounced garbage collection
  GET|POST /gc      start garbage collection now (asynchronous)
  GET|POST /prune   start prune + garbage collection now (asynchronous)
  GET /health       liveness and current state

Every handler acknowledges immediately. Work runs on background threads and
its failures are only visible in the logs.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from pydantic import BaseModel

from gc_listener.logging_utils import get_logger

logger = get_logger(__name__)


# ── Request / Response models ──────────────────────────────────────────────────


class Event(BaseModel):
    action: Optional[str] = None


class Envelope(BaseModel):
    events: Optional[List[Event]] = None


class Ack(BaseModel):
    message: str


# ── FastAPI app ────────────────────────────────────────────────────────────────


def create_app(listener) -> FastAPI:
    """Build the app around a GCListener; the lifespan starts and stops it."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        listener.start()
        try:
            yield
        finally:
            listener.stop()

    app = FastAPI(
        title="Registry GC Listener",
        version="1.0.0",
        description="Prunes old tags and runs registry garbage collection.",
        lifespan=lifespan,
    )

    @app.post("/events", status_code=status.HTTP_202_ACCEPTED)
    async def events(request: Request) -> Dict[str, Any]:
        """Registry notification webhook."""
        raw = await request.body()
        try:
            document = json.loads(raw)
            # a JSON null body carries no events
            envelope = Envelope() if document is None else Envelope.model_validate(document)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Body is not a registry notification envelope",
            )

        scheduled = False
        if any(event.action == "delete" for event in envelope.events or []):
            scheduled = listener.notify_delete()
        return {"status": "accepted", "scheduled": scheduled}

    @app.api_route("/gc", methods=["GET", "POST"], status_code=status.HTTP_202_ACCEPTED)
    def gc() -> Ack:
        """Manual garbage collection."""
        listener.trigger_gc()
        return Ack(message="GC started")

    @app.api_route("/prune", methods=["GET", "POST"], status_code=status.HTTP_202_ACCEPTED)
    def prune() -> Ack:
        """Manual prune + garbage collection."""
        if listener.trigger_prune():
            return Ack(message="prune+GC started")
        return Ack(message="prune already running")

    @app.get("/health")
    def health() -> Dict[str, Any]:
        """Health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **listener.status(),
        }

    return app
