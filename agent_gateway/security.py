"""Minimal security: API key header validation and helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request, WebSocket, status

from agent_gateway.config import settings


def _extract_api_key(headers, query_params) -> Optional[str]:
    api_key = headers.get("X-API-Key") or headers.get("x-api-key")
    if not api_key:
        auth_header = headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            api_key = auth_header[7:]
    return api_key or query_params.get("apiKey")


def is_authorized(api_key: Optional[str]) -> bool:
    if not settings.auth.require_api_key:
        return True
    return bool(api_key) and api_key == settings.auth.api_key


async def require_api_key(request: Request) -> None:
    """Validate API key from request headers."""
    if not is_authorized(_extract_api_key(request.headers, request.query_params)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


def websocket_authorized(websocket: WebSocket) -> bool:
    return is_authorized(_extract_api_key(websocket.headers, websocket.query_params))
