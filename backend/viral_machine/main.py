from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .logging_setup import configure_logging
from .routes_admin import router as admin_router
from .routes_channels import router as channels_router
from .routes_ops import router as ops_router
from .routes_queue import router as queue_router
from .routes_scheduler import router as scheduler_router
from .settings import get_settings

logger = logging.getLogger("viral_machine")

configure_logging()

app = FastAPI(title="viral-machine")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


app.include_router(ops_router)
app.include_router(admin_router)
app.include_router(channels_router)
app.include_router(queue_router)
app.include_router(scheduler_router)


@app.on_event("startup")
async def startup_event():
    """Start the orchestrator and the periodic scheduler."""
    from .services.orchestrator import get_orchestrator
    from .services.scheduler import scheduler_service

    get_orchestrator().start()
    scheduler_service.start()
    logger.info(f"{settings.app_name} started ({settings.environment})")


@app.on_event("shutdown")
async def shutdown_event():
    from .services.notify import get_notifier
    from .services.orchestrator import get_orchestrator
    from .services.scheduler import scheduler_service

    scheduler_service.stop()
    get_orchestrator().stop()
    await get_notifier().drain()
    logger.info("Orchestrator and scheduler stopped on app shutdown")
