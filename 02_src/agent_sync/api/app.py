"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .errors import register_error_handlers
from .routes import config, control, jobs, messaging


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    The Application is started and stopped with the server lifespan.
    """
    application = application or Application()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await application.start()
        yield
        await application.stop()

    fastapi_app = FastAPI(
        title="Agent Sync API",
        description="Messaging, job tracking and live agent configuration",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.application = application

    cors_origins = application.settings.cors_origins
    if cors_origins:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(fastapi_app)

    # Include routers
    fastapi_app.include_router(messaging.create_messaging_router(application))
    fastapi_app.include_router(jobs.create_jobs_router(application))
    fastapi_app.include_router(config.create_config_router(application))
    fastapi_app.include_router(control.create_control_router(application))

    return fastapi_app
