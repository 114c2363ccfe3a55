"""Agent configuration API routes."""

from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter

from ...app import Application
from ...errors import NotFoundError, ValidationError
from ...models import AgentConfigRow, SystemDefaultRow


class AgentConfigRequest(BaseModel):
    """Request model for creating or replacing an agent row."""

    model: str | None = None
    fallback_models: list[str] | None = None
    thinking: str | None = None
    instance_type: str = "primary"
    allowed_subagents: list[str] | None = None


class SystemDefaultRequest(BaseModel):
    value: str
    value_type: str = "integer"


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


def create_config_router(app: Application) -> APIRouter:
    """Create agent configuration router."""
    router = APIRouter(prefix="/api", tags=["config"])

    @router.put("/agents/{name}", response_model=StatusResponse)
    async def upsert_agent(name: str, request: AgentConfigRequest) -> dict:
        """Create or replace an agent; the config reconciler picks it up."""
        if not name.strip():
            raise ValidationError("agent name must not be empty")
        await app.storage.upsert_agent_config(
            AgentConfigRow(
                name=name.strip(),
                model=request.model,
                fallback_models=request.fallback_models,
                thinking=request.thinking,
                instance_type=request.instance_type,
                allowed_subagents=request.allowed_subagents,
            )
        )
        return {"status": "ok"}

    @router.delete("/agents/{name}", response_model=StatusResponse)
    async def delete_agent(name: str) -> dict:
        if not await app.storage.delete_agent_config(name):
            raise NotFoundError(f"agent {name} does not exist")
        return {"status": "ok"}

    @router.put("/system-defaults/{key}", response_model=StatusResponse)
    async def set_system_default(key: str, request: SystemDefaultRequest) -> dict:
        """Store a system default; unrecognized keys are stored but never published."""
        await app.storage.set_system_default(
            SystemDefaultRow(key=key, value=request.value, value_type=request.value_type)
        )
        return {"status": "ok"}

    @router.get("/config")
    async def get_config() -> dict[str, Any]:
        """The document the next sync cycle would publish."""
        return await app.config_sync.build_current()

    return router
