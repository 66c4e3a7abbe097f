#!/usr/bin/env python3
"""
REST API for the Trade Hub Controller

This module provides a FastAPI-based REST API for the waiting list and the
console pool. It is used by web front-ends to submit trades and to display
queue and console status.

Endpoints:
    GET    /api/health             - API health check
    GET    /api/status             - Hub status and statistics
    GET    /api/bots               - List all consoles
    GET    /api/queue              - Pending and active entries
    GET    /api/queue/{user_id}    - A user's unfinished entry
    POST   /api/queue              - Submit a trade
    DELETE /api/queue/{user_id}    - Cancel a user's pending entry
    POST   /api/pause              - Stop claiming new entries
    POST   /api/resume             - Resume claiming entries
    GET    /api/history            - Finished trades

Usage:
    from tradehub_app import TradeHubController, HubConfig
    from tradehub_app.api import create_api

    config = HubConfig.from_yaml("config.yaml")
    hub = TradeHubController(config)
    app = create_api(hub)
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import List, Optional, Union

try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError(
        "FastAPI and Pydantic are required for the API module.\n"
        "Install with: pip3 install fastapi uvicorn pydantic"
    )

from . import __version__
from .models import QueueResult, TradeEntry, TradeType


# =============================================================================
# Constants
# =============================================================================

# Maximum items to return in list endpoints
MAX_LIST_ITEMS = 100


# =============================================================================
# Pydantic Models for API Requests and Responses
# =============================================================================

class HealthResponse(BaseModel):
    """API health check response."""
    status: str = Field(..., description="Health status")
    timestamp: str = Field(..., description="Current server time")
    running: bool = Field(..., description="Whether the console loops are running")


class HubStatusResponse(BaseModel):
    """Hub status."""
    running: bool = Field(..., description="Whether the console loops are running")
    paused: bool = Field(..., description="Whether new claims are paused")
    total_bots: int = Field(..., ge=0, description="Registered consoles")
    connected_bots: int = Field(..., ge=0, description="Consoles with a live link")
    busy_bots: int = Field(..., ge=0, description="Consoles running a trade")
    queue_length: int = Field(..., ge=0, description="Pending entries")
    queue_capacity: int = Field(..., ge=1, description="Maximum pending entries")
    active_trades: int = Field(..., ge=0, description="Entries being traded")
    total_trades: int = Field(..., ge=0, description="Successful trades since start")
    total_failures: int = Field(..., ge=0, description="Failed trades since start")


class BotResponse(BaseModel):
    """Console status."""
    name: str = Field(..., description="Console name")
    title: str = Field(..., description="Title profile")
    state: str = Field(..., description="disconnected, idle or busy")
    executor_state: str = Field(..., description="Trade sequence state")
    connected: bool = Field(..., description="Whether the link is up")
    busy: bool = Field(..., description="Whether a trade is running")
    trade_count: int = Field(..., ge=0, description="Successful trades")
    failure_count: int = Field(..., ge=0, description="Failed trades")
    last_trade: Optional[float] = Field(None, description="Unix timestamp of the last success")
    current_trainer: Optional[str] = Field(None, description="Trainer being served")


class EntryResponse(BaseModel):
    """A queue entry."""
    user_id: str = Field(..., description="Submitter identity")
    trainer_name: str = Field(..., description="In-game trainer name")
    payload_name: str = Field(..., description="Display name of the payload")
    trade_type: str = Field(..., description="Requested operation")
    status: str = Field(..., description="Entry status")
    position: int = Field(0, ge=0, description="Queue position (0 when not pending)")
    assigned_bot: Optional[str] = Field(None, description="Console serving the entry")
    queue_time: float = Field(..., description="Unix timestamp of admission")
    start_time: Optional[float] = Field(None, description="Unix timestamp of the claim")
    end_time: Optional[float] = Field(None, description="Unix timestamp of the outcome")
    reason: Optional[str] = Field(None, description="Outcome reason")


class QueueListResponse(BaseModel):
    """Waiting list contents."""
    pending: List[EntryResponse] = Field(..., description="Pending entries in order")
    active: List[EntryResponse] = Field(..., description="Entries being traded")


class SubmitRequest(BaseModel):
    """Trade submission."""
    user_id: Union[int, str] = Field(..., description="Submitter identity")
    trainer_name: str = Field(..., min_length=1, description="In-game trainer name")
    trade_type: str = Field("trade", description="trade, clone, dump, seed_check or mystery_egg")
    trade_code: Optional[int] = Field(None, ge=0, le=99999999, description="Link code (random if omitted)")
    payload: Optional[str] = Field(None, description="Payload file name or hex:... inline data")
    file_base64: Optional[str] = Field(None, description="Payload file contents, base64 encoded")
    payload_name: Optional[str] = Field(None, description="Display name for notifications")


class SubmitResponse(BaseModel):
    """Result of a submission."""
    success: bool = Field(..., description="Whether the entry was admitted")
    result: str = Field(..., description="Admission result")
    position: int = Field(0, ge=0, description="Queue position")
    trade_code: Optional[int] = Field(None, description="Link code to use in game")


class CommandResponse(BaseModel):
    """Response from a control request."""
    success: bool = Field(..., description="Whether the request took effect")
    message: str = Field(..., description="Status message")


# =============================================================================
# API Factory
# =============================================================================

def create_api(hub_controller) -> FastAPI:
    """
    Create a FastAPI application with hub controller reference.

    Args:
        hub_controller: TradeHubController instance.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Trade Hub API",
        description="REST API for the trade waiting list and console pool",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Add CORS middleware for web access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.hub = hub_controller
    logger = logging.getLogger("API")

    # -------------------------------------------------------------------------
    # Helper Functions
    # -------------------------------------------------------------------------

    def get_hub():
        return app.state.hub

    def parse_user_id(user_id: str) -> Union[int, str]:
        """Chat front-ends use numeric ids; keep them numeric so lookups match."""
        return int(user_id) if user_id.isdigit() else user_id

    def entry_to_response(entry: TradeEntry, position: int = 0) -> EntryResponse:
        return EntryResponse(
            user_id=str(entry.user_id),
            trainer_name=entry.trainer_name,
            payload_name=entry.payload_name,
            trade_type=entry.trade_type.value,
            status=entry.status.value,
            position=position,
            assigned_bot=entry.assigned_bot,
            queue_time=entry.queue_time,
            start_time=entry.start_time,
            end_time=entry.end_time,
            reason=entry.result_reason,
        )

    # -------------------------------------------------------------------------
    # Health and Status Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    async def health_check():
        """Check API and hub health."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now().isoformat(),
            running=get_hub().running,
        )

    @app.get("/api/status", response_model=HubStatusResponse, tags=["Hub"])
    async def get_hub_status():
        """Get hub status and statistics."""
        stats = get_hub().get_stats()
        return HubStatusResponse(**{k: v for k, v in stats.items() if k != "history"})

    @app.get("/api/bots", response_model=List[BotResponse], tags=["Bots"])
    async def list_bots():
        """List all registered consoles."""
        return [
            BotResponse(
                name=s.name,
                title=s.title,
                state=s.state.value,
                executor_state=s.executor_state.value,
                connected=s.connected,
                busy=s.busy,
                trade_count=s.trade_count,
                failure_count=s.failure_count,
                last_trade=s.last_trade,
                current_trainer=s.current_trainer,
            )
            for s in get_hub().list_device_status()
        ]

    # -------------------------------------------------------------------------
    # Queue Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/queue", response_model=QueueListResponse, tags=["Queue"])
    async def list_queue():
        """Get pending entries in order, and entries being traded."""
        queue = get_hub().queue
        pending = queue.get_pending()[:MAX_LIST_ITEMS]
        return QueueListResponse(
            pending=[entry_to_response(e, i + 1) for i, e in enumerate(pending)],
            active=[entry_to_response(e) for e in queue.get_active()],
        )

    @app.get("/api/queue/{user_id}", response_model=EntryResponse, tags=["Queue"])
    async def get_queue_entry(user_id: str):
        """Get a user's unfinished entry."""
        hub = get_hub()
        uid = parse_user_id(user_id)
        entry = hub.get_entry(uid)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"User {user_id} is not in the queue")
        return entry_to_response(entry, hub.position(uid))

    @app.post("/api/queue", response_model=SubmitResponse, tags=["Queue"])
    async def submit_trade(request: SubmitRequest):
        """Submit a trade request."""
        hub = get_hub()

        try:
            trade_type = TradeType(request.trade_type.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown trade type: {request.trade_type}")

        payload_ref = request.payload
        if request.file_base64:
            try:
                payload_ref = base64.b64decode(request.file_base64, validate=True)
            except (binascii.Error, ValueError):
                raise HTTPException(status_code=400, detail="file_base64 is not valid base64")

        user_id = request.user_id
        if isinstance(user_id, str):
            user_id = parse_user_id(user_id)

        result = hub.submit(
            user_id,
            request.trainer_name,
            payload_ref,
            trade_code=request.trade_code,
            trade_type=trade_type,
            payload_name=request.payload_name,
        )

        if result != QueueResult.SUCCESS:
            logger.info(f"Rejected submission from {user_id}: {result.value}")
            return SubmitResponse(success=False, result=result.value)

        entry = hub.get_entry(user_id)
        return SubmitResponse(
            success=True,
            result=result.value,
            position=hub.position(user_id),
            trade_code=entry.trade_code if entry else None,
        )

    @app.delete("/api/queue/{user_id}", response_model=CommandResponse, tags=["Queue"])
    async def cancel_trade(user_id: str):
        """Cancel a user's pending entry."""
        removed = get_hub().cancel(parse_user_id(user_id))
        return CommandResponse(
            success=removed,
            message="Trade cancelled" if removed else "Not in queue",
        )

    # -------------------------------------------------------------------------
    # Control Endpoints
    # -------------------------------------------------------------------------

    @app.post("/api/pause", response_model=CommandResponse, tags=["Control"])
    async def pause_queue():
        """Stop claiming new entries. Running trades finish."""
        get_hub().pause()
        return CommandResponse(success=True, message="Queue paused")

    @app.post("/api/resume", response_model=CommandResponse, tags=["Control"])
    async def resume_queue():
        """Resume claiming entries."""
        get_hub().resume()
        return CommandResponse(success=True, message="Queue resumed")

    # -------------------------------------------------------------------------
    # History Endpoint
    # -------------------------------------------------------------------------

    @app.get("/api/history", response_model=List[EntryResponse], tags=["History"])
    async def get_history(
        limit: int = Query(default=50, ge=1, le=MAX_LIST_ITEMS, description="Max entries"),
    ):
        """Get finished entries, newest first."""
        return [entry_to_response(e) for e in get_hub().queue.get_history(limit)]

    return app


# =============================================================================
# Server Runner
# =============================================================================

async def run_api_server_async(
    hub_controller,
    host: str = "0.0.0.0",
    port: int = 8100,
    log_level: str = "info",
):
    """
    Serve the API in the running event loop until the server exits.

    Args:
        hub_controller: TradeHubController instance.
        host: Host to bind to.
        port: Port to bind to.
        log_level: Logging level.
    """
    import uvicorn

    app = create_api(hub_controller)
    logger = logging.getLogger("API")
    logger.info(f"API server starting on http://{host}:{port}")
    logger.info(f"API docs available at http://{host}:{port}/api/docs")

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    await server.serve()
