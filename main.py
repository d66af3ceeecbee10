#!/usr/bin/env python3
"""
Entry point for the LLM-OS action event service.

The composition root: builds the shared ActionRegistry, the producer helpers
and the approval monitor once at startup, and exposes them over a FastAPI
management API for the dashboard (action list, approve/reject decisions,
completion signals from executors).
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from llmos.actions import (
    ActionKind,
    ActionProducer,
    ActionRegistry,
    ActionRegistryError,
    ActionSource,
    ActionStatus,
    UpdateResult,
    UpdateStatus,
)
from llmos.config import Settings, get_settings, init_settings
from llmos.infra.stream import ActionStream
from llmos.monitoring.verifier import ActionMonitor

logger = logging.getLogger(__name__)


def setup_logging(config: Settings):
    """Configure root logging to stdout and, where writable, a log file."""
    log_handlers = [logging.StreamHandler(sys.stdout)]

    # Try to add file handler, but don't fail if we can't write to the file
    if config.log_file:
        try:
            os.makedirs(os.path.dirname(config.log_file) or ".", exist_ok=True)
            log_handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
        except (PermissionError, OSError) as e:
            print(f"Warning: Could not create log file: {e}")

    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=log_handlers
    )


# API models
class CreateActionRequest(BaseModel):
    kind: ActionKind
    description: str
    title: Optional[str] = None
    source: ActionSource = ActionSource.TERMINAL
    payload: Optional[Dict[str, Any]] = None
    autonomy_level: Optional[int] = None


class DecisionRequest(BaseModel):
    decision: str  # "approve" or "reject"
    reason: Optional[str] = None


class CompleteRequest(BaseModel):
    result: Optional[Any] = None


class FailRequest(BaseModel):
    error: str


def _checked(result: UpdateResult, action_id: str) -> Dict[str, Any]:
    """Map an UpdateResult to an API response or HTTP error."""
    if result.outcome == UpdateStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Action not found: {action_id}")
    if result.outcome == UpdateStatus.REJECTED:
        raise HTTPException(status_code=409, detail=result.reason)
    return {"success": True, "action": result.record.model_dump(mode="json")}


def create_app(registry: Optional[ActionRegistry] = None, config: Optional[Settings] = None) -> FastAPI:
    """
    Build the API around a registry.

    When ``registry`` is omitted a fresh one is created from settings at
    startup; that instance is the process-wide registry for the service.
    """
    config = config or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Starting LLM-OS action service...")
        shared = registry or ActionRegistry(retention=config.action_retention)
        app.state.registry = shared
        app.state.producer = ActionProducer(shared, default_autonomy_level=config.default_autonomy_level)
        app.state.monitor = ActionMonitor(shared, recent_limit=config.monitor_recent_limit)
        app.state.monitor.start()
        logger.info("✅ Action registry and monitor ready")
        try:
            yield
        finally:
            app.state.monitor.stop()
            logger.info("✅ Action service shutdown complete")

    app = FastAPI(
        title="LLM-OS Action Service",
        description="Action log, approval workflow and monitoring API for LLM-OS",
        version="1.0.0",
        lifespan=lifespan
    )

    @app.get("/")
    async def root():
        """Root endpoint with basic service information."""
        return {
            "name": "LLM-OS Action Service",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "actions": "/actions",
                "action": "/actions/{action_id}",
                "pending": "/actions/pending",
                "stream": "/actions/stream",
                "decision": "/actions/{action_id}/decision",
                "complete": "/actions/{action_id}/complete",
                "fail": "/actions/{action_id}/fail",
                "cleanup": "/actions/cleanup",
                "status": "/status",
                "simple_health": "/health/simple",
                "docs": "/docs"
            }
        }

    @app.get("/health/simple")
    async def simple_health(request: Request):
        """Simple health check for load balancers and container health checks."""
        if getattr(request.app.state, "registry", None) is None:
            raise HTTPException(status_code=503, detail="Action registry not initialized")
        return {"status": "healthy"}

    @app.get("/status")
    async def system_status(request: Request):
        """Registry and monitor statistics."""
        return {
            "status": "operational",
            "registry": request.app.state.registry.get_stats(),
            "monitor": {
                "running": request.app.state.monitor.running,
                "recent": len(request.app.state.monitor.recent),
                "pending": len(request.app.state.monitor.pending)
            },
            "config": {
                "default_autonomy_level": int(request.app.state.producer.default_autonomy_level),
                "autonomy_label": request.app.state.producer.default_autonomy_level.label,
            }
        }

    @app.get("/actions")
    async def list_actions(request: Request, status: Optional[ActionStatus] = None):
        """List actions in emission order, optionally filtered by status."""
        registry_ = request.app.state.registry
        actions = registry_.get_actions_by_status(status) if status else registry_.get_actions()
        return {"success": True, "actions": [a.model_dump(mode="json") for a in actions]}

    @app.get("/actions/pending")
    async def pending_actions(request: Request):
        """Actions awaiting approval, newest first, with impact and preview."""
        return {"success": True, "pending": request.app.state.monitor.pending_summary()}

    @app.get("/actions/stream")
    async def stream_actions(request: Request, limit: Optional[int] = None):
        """
        Server-sent events: one event per action creation or update.

        With ``limit`` the stream ends after that many events.
        """
        stream = ActionStream(request.app.state.registry, max_queue_size=config.stream_queue_size)
        await stream.start()

        async def events():
            sent = 0
            try:
                async for record in stream:
                    if await request.is_disconnected():
                        break
                    yield f"data: {record.model_dump_json()}\n\n"
                    sent += 1
                    if limit is not None and sent >= limit:
                        break
            finally:
                await stream.stop()

        return StreamingResponse(events(), media_type="text/event-stream")

    @app.get("/actions/{action_id}")
    async def get_action(request: Request, action_id: str):
        """Get a single action."""
        action = request.app.state.registry.get_action(action_id)
        if action is None:
            raise HTTPException(status_code=404, detail=f"Action not found: {action_id}")
        return {"success": True, "action": action.model_dump(mode="json")}

    @app.post("/actions")
    async def create_action(request: Request, body: CreateActionRequest):
        """Record a proposed action, applying the approval gating policy."""
        try:
            action = request.app.state.producer.create_action(
                body.kind,
                body.title or body.description,
                body.description,
                body.source,
                body.payload,
                body.autonomy_level,
            )
        except (ValidationError, ValueError) as e:
            logger.warning(f"Rejected action request: {e}")
            raise HTTPException(status_code=422, detail=f"Invalid action: {str(e)}")
        return {"success": True, "action": action.model_dump(mode="json")}

    @app.post("/actions/cleanup")
    async def cleanup_actions(request: Request, keep_last: Optional[int] = None):
        """Trim the action log to the most recent records."""
        try:
            dropped = request.app.state.registry.cleanup(keep_last)
        except ActionRegistryError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "dropped": dropped}

    @app.post("/actions/{action_id}/decision")
    async def decide_action(request: Request, action_id: str, body: DecisionRequest):
        """Approve or reject an action awaiting approval."""
        monitor = request.app.state.monitor
        if body.decision == "approve":
            logger.info(f"Approving action: {action_id}")
            return _checked(monitor.approve(action_id), action_id)
        if body.decision == "reject":
            logger.info(f"Rejecting action: {action_id}")
            return _checked(monitor.reject(action_id, body.reason or "Rejected by user"), action_id)
        raise HTTPException(status_code=400, detail='Invalid decision. Must be "approve" or "reject"')

    @app.post("/actions/{action_id}/complete")
    async def complete_action(request: Request, action_id: str, body: CompleteRequest):
        """Executor signal: the action finished."""
        return _checked(request.app.state.registry.complete_action(action_id, body.result), action_id)

    @app.post("/actions/{action_id}/fail")
    async def fail_action(request: Request, action_id: str, body: FailRequest):
        """Executor signal: the action failed."""
        return _checked(request.app.state.registry.fail_action(action_id, body.error), action_id)

    return app


def main():
    """Main entry point for the application."""
    config = init_settings()
    setup_logging(config)

    uvicorn_config = uvicorn.Config(
        create_app(config=config),
        host=config.api_host,
        port=config.api_port,
        log_level=config.log_level.lower(),
        access_log=True
    )
    server = uvicorn.Server(uvicorn_config)

    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped by user")
    except Exception as e:
        logger.error(f"❌ Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
