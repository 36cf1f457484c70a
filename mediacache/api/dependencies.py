from fastapi import HTTPException, Request

from ..services.fill import FillOrchestrator


def get_orchestrator(request: Request) -> FillOrchestrator:
    """FastAPI dependency: the orchestrator built at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service starting")
    return orchestrator
