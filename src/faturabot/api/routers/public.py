"""Public routes."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict:
    """Liveness plus the provider shape and which upstreams are configured.

    Never exposes URLs or credentials.
    """
    settings = request.app.state.settings
    return {
        "status": "ok",
        "message_format": settings.message_format,
        "erp_configured": bool(settings.erp.base_url),
        "evolution_configured": settings.evolution.is_complete(),
    }
