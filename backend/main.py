"""
DriverSync API Server.
FastAPI app exposing driver task lists, route planning and bulk confirmation,
with a WebSocket that pushes the task list whenever it changes.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, configure_logging
from exceptions import InvalidTransitionError, SelectionError, SessionNotFoundError, TaskNotFoundError
from models import (
    AssignTaskRequest,
    BulkRequest,
    BulkResponse,
    RouteError,
    RouteRequest,
    RouteResult,
    SelectionKind,
    SelectionState,
    TaskListResponse,
    TaskStats,
    ToggleAllRequest,
    ToggleRequest,
)
from session import DriverSession, SessionRegistry
from simulator import DispatchSimulator

logger = logging.getLogger(__name__)

# --- Global State ---
settings: Settings | None = None
backend: DispatchSimulator | None = None
registry: SessionRegistry | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    global settings, backend, registry

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    backend = DispatchSimulator()
    registry = SessionRegistry(backend, settings)

    logger.info("DriverSync server started")
    logger.info(
        "Deadline window %sh, debounce %ss, poll every %ss",
        settings.default_deadline_hours,
        settings.debounce_seconds,
        settings.poll_interval_seconds,
    )

    yield

    # Shutdown: no timers or subscriptions may outlive the app
    await registry.close_all()
    logger.info("DriverSync server stopped")


# --- FastAPI App ---
app = FastAPI(
    title="DriverSync API",
    description="Pickup task sync, urgency and route sequencing for field drivers",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _session(driver_id: str) -> DriverSession:
    try:
        return registry.get(driver_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# --- Sessions ---

@app.post("/api/drivers/{driver_id}/session", response_model=TaskListResponse)
async def open_session(driver_id: str):
    """Start a driver session: subscribe, poll and run the initial load."""
    if settings.seed_demo_tasks and not any(r["driver_id"] == driver_id for r in backend.rows.values()):
        backend.seed_demo(driver_id)
    session = await registry.open(driver_id)
    return session.task_list()


@app.delete("/api/drivers/{driver_id}/session")
async def close_session(driver_id: str):
    """End a driver session and release its timers and subscription."""
    closed = await registry.close(driver_id)
    return {"driver_id": driver_id, "closed": closed}


# --- Tasks ---

@app.get("/api/drivers/{driver_id}/tasks", response_model=TaskListResponse)
async def get_tasks(driver_id: str):
    """Pending and picked-up tasks, most urgent first."""
    return _session(driver_id).task_list()


@app.get("/api/drivers/{driver_id}/stats", response_model=TaskStats)
async def get_stats(driver_id: str):
    """Task counts by status and urgency tier."""
    return _session(driver_id).store.stats(datetime.now(timezone.utc))


@app.post("/api/drivers/{driver_id}/tasks/refresh", response_model=TaskListResponse)
async def refresh_tasks(driver_id: str):
    """Pull-to-refresh: fetch a fresh snapshot now."""
    session = _session(driver_id)
    await session.sync.refresh()
    return session.task_list()


@app.post("/api/drivers/{driver_id}/route", response_model=RouteResult)
async def plan_route(driver_id: str, request: RouteRequest):
    """Order the selected tasks by nearest neighbor and build a navigation URL."""
    session = _session(driver_id)
    result = session.plan_route(origin=request.origin, task_ids=request.task_ids)
    if isinstance(result, RouteError):
        raise HTTPException(status_code=400, detail=result.error)
    return result


@app.post("/api/drivers/{driver_id}/tasks/bulk", response_model=BulkResponse)
async def bulk_transition(driver_id: str, request: BulkRequest):
    """Confirm pickup or delivery for several tasks with one proof."""
    session = _session(driver_id)
    try:
        result = await session.apply_bulk(request.transition, request.task_ids, request.proof)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BulkResponse(
        succeeded_ids=result.succeeded_ids,
        failed_ids=result.failed_ids,
        message=result.summary(),
    )


# --- Selection ---

@app.get("/api/drivers/{driver_id}/selection", response_model=SelectionState)
async def get_selection(driver_id: str):
    """Route and bulk selections, with what can still be selected."""
    return _session(driver_id).selection_state()


@app.post("/api/drivers/{driver_id}/selection/{kind}/toggle", response_model=SelectionState)
async def toggle_selection(driver_id: str, kind: SelectionKind, request: ToggleRequest):
    """Select or deselect one task."""
    session = _session(driver_id)
    try:
        session.toggle_selection(kind, request.task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.selection_state()


@app.post("/api/drivers/{driver_id}/selection/{kind}/toggle-all", response_model=SelectionState)
async def toggle_all_selection(driver_id: str, kind: SelectionKind, request: ToggleAllRequest):
    """Select every eligible task, or deselect them if all are selected."""
    session = _session(driver_id)
    session.toggle_all_selection(kind, request.task_ids)
    return session.selection_state()


@app.delete("/api/drivers/{driver_id}/selection/{kind}", response_model=SelectionState)
async def clear_selection(driver_id: str, kind: SelectionKind):
    session = _session(driver_id)
    session.clear_selection(kind)
    return session.selection_state()


# --- Dispatcher ---

@app.post("/api/dispatch/tasks")
async def assign_task(request: AssignTaskRequest):
    """Assign a pickup to a driver (dispatcher side)."""
    row = backend.assign_task(
        request.driver_id,
        request_id=request.request_id,
        client_name=request.client_name,
        client_address=request.client_address,
        waste_type=request.waste_type,
        fill_level=request.fill_level,
        latitude=request.latitude,
        longitude=request.longitude,
        created_at=request.created_at,
        max_pickup_hours=request.max_pickup_hours,
    )
    return {"success": True, "task_id": row["id"], "request_id": row["request_id"]}


@app.delete("/api/dispatch/tasks/{task_id}")
async def unassign_task(task_id: str):
    """Take a pickup away from its driver."""
    if not backend.unassign_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return {"success": True, "task_id": task_id}


# --- WebSocket ---

@app.websocket("/ws/drivers/{driver_id}")
async def websocket_driver(websocket: WebSocket, driver_id: str):
    """Push the driver's task list on every store change and on the list tick."""
    session: Optional[DriverSession] = registry.sessions.get(driver_id)
    if session is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    changed = asyncio.Event()
    unsubscribe = session.store.subscribe(lambda _store: changed.set())
    try:
        while True:
            await websocket.send_text(session.task_list().model_dump_json())
            changed.clear()
            try:
                await asyncio.wait_for(changed.wait(), timeout=settings.list_tick_seconds)
            except asyncio.TimeoutError:
                pass  # urgency text is time-based, resend on the tick
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()


@app.websocket("/ws/drivers/{driver_id}/tasks/{task_id}/countdown")
async def websocket_countdown(websocket: WebSocket, driver_id: str, task_id: str):
    """Stream one task's countdown every countdown tick until it leaves the list."""
    session: Optional[DriverSession] = registry.sessions.get(driver_id)
    if session is None or session.countdown(task_id) is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    try:
        while True:
            frame = session.countdown(task_id)
            if frame is None:
                await websocket.close()
                return
            await websocket.send_text(frame.model_dump_json())
            try:
                # client messages are ignored; receiving notices a disconnect
                await asyncio.wait_for(websocket.receive_text(), timeout=settings.countdown_tick_seconds)
            except asyncio.TimeoutError:
                pass
    except WebSocketDisconnect:
        pass


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "sessions": len(registry.sessions) if registry else 0,
        "tasks": len(backend.rows) if backend else 0,
    }
