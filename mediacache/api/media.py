"""
Catch-all media endpoint: every GET that is not a health or ops route.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response, StreamingResponse

from ..services.fill import FillOrchestrator, MediaResponse
from .dependencies import get_orchestrator

router = APIRouter(tags=["media"])


def to_http_response(result: MediaResponse) -> Response:
    headers = {"Cache-Control": result.cache_control}
    if result.stream is not None:
        if result.content_length is not None:
            headers["Content-Length"] = str(result.content_length)
        return StreamingResponse(
            result.stream,
            status_code=result.status_code,
            media_type=result.content_type,
            headers=headers,
        )
    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type=result.content_type,
        headers=headers,
    )


@router.get("/{asset_path:path}")
async def serve_media(
    asset_path: str,
    request: Request,
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
) -> Response:
    # repeated query keys: last value wins
    query = dict(request.query_params)
    result = await orchestrator.handle(asset_path, query)
    return to_http_response(result)
