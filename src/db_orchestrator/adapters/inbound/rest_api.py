"""REST API adapter for the database orchestrator.

This module provides a FastAPI-based REST and WebSocket API over the
DatabaseOrchestrator command surface.

Endpoints:
    GET /health - Health check
    GET /instances - List instances
    POST /instances - Install an engine and create an instance
    GET /instances/{id} - Get one instance
    GET /instances/{id}/status - Reconciled live status
    PATCH /instances/{id} - Rename or toggle auto-start
    DELETE /instances/{id} - Stop, erase data and remove
    DELETE /instances - Delete every instance
    PUT /instances/{id}/credentials - Rotate the password of a running instance
    POST /instances/{id}/start - Start an instance
    POST /instances/{id}/stop - Stop an instance
    PATCH /instances/{id}/port - Change the port of a stopped instance
    POST /auto-start - Start all auto-start instances
    GET /ports/{port}/conflict - Check a port
    GET /ports/banned - List banned ports
    PUT /ports/banned - Replace banned ports
    WS /events - status-changed and install-progress events

Command endpoints answer 200 with success=false for expected failures.
Unknown instance ids answer 404.

Usage:
    from db_orchestrator.adapters.inbound.rest_api import create_app
    from db_orchestrator.infrastructure.container import build_orchestrator

    app = create_app(build_orchestrator(get_config()))
    # Run with uvicorn: uvicorn app:app --host 127.0.0.1 --port 8765
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from db_orchestrator import __version__
from db_orchestrator.application import DatabaseOrchestrator
from db_orchestrator.domain.entities import EngineType, InstallRequest
from db_orchestrator.domain.errors import InstanceNotFoundError, StorageError

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Accepts both camelCase and snake_case field names."""

    model_config = ConfigDict(populate_by_name=True)


class InstallBody(CamelModel):
    """Request model for installing an instance."""

    type: EngineType = Field(..., description="Database engine")
    name: str = Field(..., description="Display name, unique")
    version: str = Field(..., description="Engine version, e.g. '16' or '8.0'")
    port: int = Field(..., description="Port the engine listens on")
    data_path: str | None = Field(None, alias="dataPath", description="Data directory")
    username: str | None = Field(None, description="Engine user, per-engine default if omitted")
    password: str | None = Field(None, description="Engine password")
    auto_start: bool = Field(False, alias="autoStart", description="Start with the orchestrator")
    database_name: str | None = Field(
        None, alias="databaseName", description="Database created on first start"
    )


class PortBody(BaseModel):
    """Request model for changing a port."""

    port: int = Field(..., description="New port")


class UpdateBody(CamelModel):
    """Request model for renaming or toggling auto-start."""

    name: str | None = Field(None, description="New name")
    auto_start: bool | None = Field(None, alias="autoStart", description="Auto-start flag")


class CredentialsBody(BaseModel):
    """Request model for rotating a password."""

    password: str = Field(..., description="New password")
    username: str | None = Field(None, description="Existing username, cannot change")


class BannedPortsBody(BaseModel):
    """Request model for the banned ports list."""

    ports: list[int] = Field(default_factory=list, description="Ports never allocated")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    instances: int = Field(..., description="Number of instances")
    running: int = Field(..., description="Number of running instances")


def create_app(orchestrator: DatabaseOrchestrator, manage_lifecycle: bool = True) -> FastAPI:
    """Create a FastAPI application for the orchestrator.

    Args:
        orchestrator: The orchestrator to expose.
        manage_lifecycle: Reconcile and auto-start on startup and stop all
            instances on shutdown.

    Returns:
        A configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await orchestrator.reconcile()
            await orchestrator.auto_start()
        yield
        if manage_lifecycle:
            await orchestrator.shutdown()

    app = FastAPI(
        title="DB Orchestrator API",
        description="Lifecycle management for local database instances",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InstanceNotFoundError)
    async def not_found(request: Request, exc: InstanceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_failed(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        instances = orchestrator.get_instances()
        return HealthResponse(
            status="healthy",
            version=__version__,
            instances=len(instances),
            running=sum(1 for i in instances if i.is_running()),
        )

    # ── Instances ───────────────────────────────────────────────

    @app.get("/instances", tags=["Instances"])
    async def list_instances() -> list[dict[str, Any]]:
        return [i.to_record() for i in orchestrator.get_instances()]

    @app.post("/instances", tags=["Instances"])
    async def install(body: InstallBody) -> dict[str, Any]:
        """Install an engine and create a stopped instance."""
        request = InstallRequest(
            type=body.type,
            name=body.name,
            version=body.version,
            port=body.port,
            data_path=body.data_path,
            username=body.username,
            password=body.password,
            auto_start=body.auto_start,
            database_name=body.database_name,
        )
        result = await orchestrator.install(request)
        return result.to_dict()

    @app.get("/instances/{instance_id}", tags=["Instances"])
    async def get_instance(instance_id: str) -> dict[str, Any]:
        return orchestrator.get_instance(instance_id).to_record()

    @app.get("/instances/{instance_id}/status", tags=["Instances"])
    async def get_status(instance_id: str) -> dict[str, Any]:
        status = orchestrator.check_status(instance_id)
        return {"id": instance_id, "status": status.value}

    @app.patch("/instances/{instance_id}", tags=["Instances"])
    async def update_instance(instance_id: str, body: UpdateBody) -> dict[str, Any]:
        """Rename an instance and/or toggle auto-start."""
        orchestrator.get_instance(instance_id)
        if body.name is not None:
            result = await orchestrator.rename(instance_id, body.name)
            if not result.success or body.auto_start is None:
                return result.to_dict()
        if body.auto_start is not None:
            result = await orchestrator.set_auto_start(instance_id, body.auto_start)
            return result.to_dict()
        return {"success": True, "message": "Nothing to update"}

    @app.delete("/instances/{instance_id}", tags=["Instances"])
    async def delete_instance(instance_id: str) -> dict[str, Any]:
        result = await orchestrator.delete(instance_id)
        return result.to_dict()

    @app.delete("/instances", tags=["Instances"])
    async def delete_all_instances() -> dict[str, Any]:
        result = await orchestrator.delete_all()
        return result.to_dict()

    @app.put("/instances/{instance_id}/credentials", tags=["Instances"])
    async def update_credentials(instance_id: str, body: CredentialsBody) -> dict[str, Any]:
        result = await orchestrator.update_credentials(instance_id, body.password, body.username)
        return result.to_dict()

    # ── Lifecycle ───────────────────────────────────────────────

    @app.post("/instances/{instance_id}/start", tags=["Lifecycle"])
    async def start_instance(instance_id: str) -> dict[str, Any]:
        result = await orchestrator.start(instance_id)
        return result.to_dict()

    @app.post("/instances/{instance_id}/stop", tags=["Lifecycle"])
    async def stop_instance(instance_id: str) -> dict[str, Any]:
        result = await orchestrator.stop(instance_id)
        return result.to_dict()

    @app.post("/auto-start", tags=["Lifecycle"])
    async def auto_start() -> dict[str, Any]:
        summary = await orchestrator.auto_start()
        return summary.to_dict()

    # ── Ports ───────────────────────────────────────────────────

    @app.patch("/instances/{instance_id}/port", tags=["Ports"])
    async def update_port(instance_id: str, body: PortBody) -> dict[str, Any]:
        result = await orchestrator.update_port(instance_id, body.port)
        return result.to_dict()

    @app.get("/ports/banned", tags=["Ports"])
    async def get_banned_ports() -> BannedPortsBody:
        return BannedPortsBody(ports=orchestrator.get_banned_ports())

    @app.put("/ports/banned", tags=["Ports"])
    async def set_banned_ports(body: BannedPortsBody) -> BannedPortsBody:
        return BannedPortsBody(ports=orchestrator.set_banned_ports(body.ports))

    @app.get("/ports/{port}/conflict", tags=["Ports"])
    async def check_port(port: int, exclude_id: str | None = None) -> dict[str, Any]:
        """Check whether a port is claimed.

        Args:
            port: Port to check.
            exclude_id: Instance to ignore, typically the one being edited.
        """
        result = await orchestrator.check_port_conflict(port, exclude_id)
        return result.to_dict()

    # ── Events ──────────────────────────────────────────────────

    @app.websocket("/events")
    async def events(websocket: WebSocket) -> None:
        """Stream orchestrator events as JSON messages.

        A receive loop runs beside the sender so a client that goes away
        is unsubscribed at once, not on the next event.
        """
        await websocket.accept()

        async def forward() -> None:
            async with aclosing(orchestrator.events.stream()) as stream:
                async for event in stream:
                    await websocket.send_json({"event": event.name, "data": event.to_dict()})

        async def until_disconnect() -> None:
            while (await websocket.receive())["type"] != "websocket.disconnect":
                pass

        tasks = {asyncio.create_task(forward()), asyncio.create_task(until_disconnect())}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                raise error
        logger.debug("Event stream client disconnected")

    return app


def run_server(
    orchestrator: DatabaseOrchestrator,
    host: str = "127.0.0.1",
    port: int = 8765,
) -> None:
    """Run the REST API server.

    Args:
        orchestrator: The orchestrator to expose.
        host: Host to bind to.
        port: Port to bind to.
    """
    import uvicorn

    app = create_app(orchestrator)
    uvicorn.run(app, host=host, port=port, log_config=None)
