"""Control API routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter

from ...app import Application


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class ReconcilerStatusResponse(BaseModel):
    name: str
    state: str
    cycles: int
    failures: int
    reconnects: int
    last_error: str | None
    last_cycle_at: datetime | None


class SpawnRequest(BaseModel):
    agent_id: str | None = None


class SpawnResponse(BaseModel):
    blocked: bool
    reason: str | None
    overrides: dict


def create_control_router(app: Application) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api", tags=["control"])

    @router.get("/health", response_model=StatusResponse)
    async def health() -> dict:
        return {"status": "ok"}

    @router.get("/sync/status", response_model=list[ReconcilerStatusResponse])
    async def sync_status() -> list[ReconcilerStatusResponse]:
        """State and counters of every reconciler."""
        result = []
        for reconciler in app.reconcilers:
            status = reconciler.status()
            result.append(
                ReconcilerStatusResponse(
                    name=status.name,
                    state=status.state.value,
                    cycles=status.cycles,
                    failures=status.failures,
                    reconnects=status.reconnects,
                    last_error=status.last_error,
                    last_cycle_at=status.last_cycle_at,
                )
            )
        return result

    @router.post("/sync/rebuild", response_model=StatusResponse)
    async def request_rebuild() -> dict:
        """Schedule a config rebuild without waiting for it."""
        app.config_reconciler.request_rebuild()
        return {"status": "scheduled"}

    @router.post("/spawn/resolve", response_model=SpawnResponse)
    async def resolve_spawn(request: SpawnRequest) -> dict:
        """Pre-spawn lookup of model, fallbacks and thinking level."""
        decision = await app.spawn_resolver.resolve(request.agent_id)
        return {
            "blocked": decision.blocked,
            "reason": decision.reason,
            "overrides": decision.overrides,
        }

    return router
