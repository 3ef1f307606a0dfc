"""
FastAPI server exposing the orchestrator's status, controls and recent logs.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from kline_agent.errors import SelfCheckError

logger = logging.getLogger(__name__)


class ControlResponse(BaseModel):
    status: str
    changed: bool
    message: str


class LogsResponse(BaseModel):
    lines: List[str]
    count: int


class SubscriptionLogsResponse(LogsResponse):
    dropped: int


def create_app(controller, broadcaster=None, allow_origins: Optional[List[str]] = None) -> FastAPI:
    """
    Build the control API around a LoopController.

    Args:
        controller: LoopController instance
        broadcaster: LogBroadcaster serving /api/logs and log subscriptions (optional)
        allow_origins: CORS origins for the front end
    """
    app = FastAPI(title="Kline Agent API")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch all unhandled exceptions and return 500 with error details"""
        logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "detail": str(exc),
                "path": str(request.url.path)
            }
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "Kline Agent API", "status": controller.status.value}

    @app.get("/api/status")
    async def get_status() -> Dict[str, Any]:
        return controller.status_snapshot()

    @app.post("/api/start", response_model=ControlResponse)
    async def start_agent():
        try:
            changed = await controller.start()
        except SelfCheckError as e:
            return JSONResponse(
                status_code=503,
                content={"status": controller.status.value, "changed": False, "message": str(e)},
            )
        message = "Agent started" if changed else "Agent is already running"
        return ControlResponse(status=controller.status.value, changed=changed, message=message)

    @app.post("/api/stop", response_model=ControlResponse)
    async def stop_agent():
        controller.stop()
        return ControlResponse(status=controller.status.value, changed=True, message="Agent stopped")

    @app.post("/api/pause", response_model=ControlResponse)
    async def pause_agent():
        controller.pause()
        return ControlResponse(
            status=controller.status.value, changed=True, message="Agent paused (schedulers stopped)"
        )

    @app.get("/api/logs", response_model=LogsResponse)
    async def get_logs(limit: int = Query(100, ge=1, le=5000)):
        lines = broadcaster.recent(limit) if broadcaster is not None else []
        return LogsResponse(lines=lines, count=len(lines))

    subscriptions: Dict[str, Any] = {}

    def _subscription(subscription_id: str):
        subscription = subscriptions.get(subscription_id)
        if subscription is None:
            raise HTTPException(status_code=404, detail=f"Unknown log subscription {subscription_id}")
        return subscription

    @app.post("/api/logs/subscriptions")
    async def subscribe_logs(capacity: Optional[int] = Query(None, ge=1, le=5000)):
        """Open a bounded log buffer; poll it with GET until it is deleted."""
        if broadcaster is None:
            raise HTTPException(status_code=503, detail="Log streaming is not enabled")
        subscription_id = uuid.uuid4().hex
        subscriptions[subscription_id] = broadcaster.subscribe(capacity)
        return {"id": subscription_id, "capacity": capacity or broadcaster.capacity}

    @app.get("/api/logs/subscriptions/{subscription_id}", response_model=SubscriptionLogsResponse)
    async def poll_logs(subscription_id: str):
        subscription = _subscription(subscription_id)
        lines = subscription.drain()
        return SubscriptionLogsResponse(lines=lines, count=len(lines), dropped=subscription.dropped)

    @app.delete("/api/logs/subscriptions/{subscription_id}")
    async def unsubscribe_logs(subscription_id: str):
        subscription = _subscription(subscription_id)
        subscription.close()
        del subscriptions[subscription_id]
        return {"status": "success", "message": "Log subscription closed"}

    return app
