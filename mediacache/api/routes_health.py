from fastapi import APIRouter, status
from fastapi.responses import PlainTextResponse

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, response_class=PlainTextResponse)
async def health() -> str:
    """Liveness only: no store is contacted."""
    return "ok"
