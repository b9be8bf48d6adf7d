"""Health check endpoint for ErrorHub.

Unauthenticated and mounted at root (no /api/v1 prefix). Used by
Kubernetes liveness probes. Readiness is the same as liveness: the error
mapping has no external dependencies.
"""

import importlib.metadata

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, str | bool]:
    """Liveness probe: returns 200 with the version and whether mapping is sealed."""
    try:
        version = importlib.metadata.version("errorhub")
    except importlib.metadata.PackageNotFoundError:
        version = "unknown"
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "ok",
        "version": version,
        "sealed": bool(dispatcher and dispatcher.sealed),
    }
