from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/healthz")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint that verifies watcher and ledger connectivity"""

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return {"status": "degraded", "reason": "bridge runtime not configured", "watcher": None}

    health = await runtime.health()
    provider_status = {"gateway": health["gateway"], "xrpl": health["xrpl"]}

    all_healthy = all(
        status["status"] in ["healthy", "disabled"]
        for status in provider_status.values()
    )

    return {
        "status": "healthy" if all_healthy and health["watcher"]["running"] else "degraded",
        "watcher": health["watcher"],
        "providers": provider_status,
    }
