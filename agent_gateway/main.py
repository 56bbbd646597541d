"""Main FastAPI application for the agent gateway."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agent_gateway import __version__
from agent_gateway.config import settings
from agent_gateway.logging_config import setup_logging
from agent_gateway.routers import agent_router
from agent_gateway.security import require_api_key
from agent_gateway.services.providers import registry as provider_registry
from agent_gateway.services.session_registry import session_registry
from agent_gateway.ws.events import websocket_endpoint

setup_logging(settings.logging.level, settings.logging.file)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    logger.info("Agent gateway starting up...")
    logger.info(f"Server config: {settings.server.host}:{settings.server.port}")
    logger.info(f"Providers: {provider_registry.names()} (default={settings.providers.default})")
    logger.info(f"Auth config: require_api_key={settings.auth.require_api_key}")
    yield
    active = [entry.id for entry in session_registry.list_active()]
    for session_id in active:
        await session_registry.abort(session_id)
    logger.info("Agent gateway shutting down (aborted %d session(s))", len(active))


app = FastAPI(
    title="Agent Gateway",
    description="Normalized event stream and tool approvals for coding agents",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.allow_origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=settings.cors.allow_methods,
    allow_headers=settings.cors.allow_headers,
)


# Health endpoint WITHOUT authentication
@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint (no auth required)."""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "agent-gateway",
            "version": __version__,
            "auth_enabled": settings.auth.require_api_key,
            "active_sessions": len(session_registry.list_active()),
        },
    )


@app.get("/")
async def root() -> JSONResponse:
    """Root endpoint (no auth required)."""
    return JSONResponse(
        status_code=200,
        content={
            "service": "agent-gateway",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        },
    )


@app.websocket("/ws/agent")
async def websocket_agent(websocket: WebSocket) -> None:
    """WebSocket endpoint for agent runs and approvals."""
    await websocket_endpoint(websocket)


_auth_deps = [Depends(require_api_key)] if settings.auth.require_api_key else []

app.include_router(
    agent_router,
    prefix="/api/v1/agent",
    tags=["agent"],
    dependencies=_auth_deps,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agent_gateway.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
