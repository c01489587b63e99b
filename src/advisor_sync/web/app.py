"""
Advisor Sync Web - FastAPI application.

HTTP surface over a SyncRuntime, for hosts that drive the engine out of
process. Every route returns the engine's result model as JSON; expected
sync failures are reported in the body, not as HTTP errors.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from advisor_sync import __version__
from advisor_sync.errors import UnknownDomainError
from advisor_sync.models import (
    BackupListResult,
    BackupResult,
    PullResult,
    PushAllResult,
    PushResult,
    RestoreResult,
    SyncState,
)
from advisor_sync.runtime import SyncRuntime

logger = logging.getLogger(__name__)


# =============================================================================
# Models
# =============================================================================


class StatusResponse(SyncState):
    last_backup: str


class ConnectivityRequest(BaseModel):
    online: bool


class FlushResponse(BaseModel):
    flushed: list[str]


class ScheduleResponse(BaseModel):
    domain: str
    pending: list[str]


# =============================================================================
# App
# =============================================================================


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def create_app(runtime: SyncRuntime | None = None) -> FastAPI:
    """
    Build the app.

    With no runtime, one is built from settings on startup and stopped on
    shutdown. A runtime passed in is owned by the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        if owned:
            app.state.runtime = SyncRuntime.from_settings()
            result = await app.state.runtime.start()
            logger.info(f"Initial pull: success={result.success}")
        try:
            yield
        finally:
            if owned:
                await app.state.runtime.stop()

    app = FastAPI(title="Advisor Sync", version=__version__, lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    @app.get("/sync/status", response_model=StatusResponse)
    async def sync_status(runtime: SyncRuntime = Depends(get_runtime)):
        state = runtime.engine.state()
        return StatusResponse(
            **state.model_dump(),
            last_backup=runtime.backups.time_since_last_backup(),
        )

    @app.post("/sync/pull", response_model=PullResult)
    async def sync_pull(runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.engine.start_session()

    @app.post("/sync/refresh", response_model=PullResult)
    async def sync_refresh(runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.engine.refresh()

    @app.post("/sync/push/{domain}", response_model=PushResult)
    async def sync_push(domain: str, runtime: SyncRuntime = Depends(get_runtime)):
        try:
            return await runtime.engine.push(domain)
        except UnknownDomainError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/sync/schedule/{domain}", response_model=ScheduleResponse)
    async def sync_schedule(domain: str, immediate: bool = False, runtime: SyncRuntime = Depends(get_runtime)):
        """Queue a push: debounced by default, right away with `immediate`."""
        try:
            name = runtime.engine.registry.resolve(domain).value
        except UnknownDomainError as e:
            raise HTTPException(status_code=404, detail=str(e))
        if immediate:
            runtime.engine.push_soon(name)
        else:
            runtime.engine.schedule_debounced(name)
        return ScheduleResponse(domain=name, pending=runtime.engine.state().pending)

    @app.post("/sync/push-all", response_model=PushAllResult)
    async def sync_push_all(runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.engine.push_all()

    @app.post("/sync/flush", response_model=FlushResponse)
    async def sync_flush(runtime: SyncRuntime = Depends(get_runtime)):
        return FlushResponse(flushed=runtime.engine.flush_all())

    @app.post("/sync/connectivity", response_model=StatusResponse)
    async def sync_connectivity(req: ConnectivityRequest, runtime: SyncRuntime = Depends(get_runtime)):
        runtime.set_online(req.online)
        return await sync_status(runtime)

    @app.post("/lifecycle/hidden", response_model=FlushResponse)
    async def lifecycle_hidden(runtime: SyncRuntime = Depends(get_runtime)):
        return FlushResponse(flushed=runtime.on_visibility_hidden())

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    @app.post("/backups", response_model=BackupResult)
    async def create_backup(runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.backups.create_backup()

    @app.get("/backups", response_model=BackupListResult)
    async def list_backups(runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.backups.list_backups()

    @app.post("/backups/{backup_date}/restore", response_model=RestoreResult)
    async def restore_backup(backup_date: str, runtime: SyncRuntime = Depends(get_runtime)):
        return await runtime.backups.restore_from_backup(backup_date)

    return app
