"""Audio download and streaming endpoints with byte-range support."""

from urllib.parse import quote

from fastapi import APIRouter, Header, Response, status
import structlog

from converter_api.api.schemas import ErrorResponse
from converter_api.conversion.orchestrator import get_orchestrator
from converter_api.core.delivery import Artifact, ArtifactDelivery, parse_range, safe_filename

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["media"])

AUDIO_MEDIA_TYPE = "audio/mpeg"
EXPOSED_HEADERS = "Content-Length, Content-Range, Accept-Ranges"

_media_responses = {
    200: {"content": {AUDIO_MEDIA_TYPE: {}}},
    206: {"content": {AUDIO_MEDIA_TYPE: {}}},
    404: {"model": ErrorResponse},
    416: {"model": ErrorResponse},
}


def get_delivery() -> ArtifactDelivery:
    orchestrator = get_orchestrator()
    return ArtifactDelivery(orchestrator.task_manager, orchestrator.artifacts)


def _audio_response(
    artifact: Artifact,
    range_header: str | None,
    disposition: str,
    extra_headers: dict[str, str] | None = None,
) -> Response:
    byte_range = parse_range(range_header, artifact.size)
    filename = quote(safe_filename(artifact.title))

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Disposition": f"{disposition}; filename*=UTF-8''{filename}",
        **(extra_headers or {}),
    }

    if byte_range is None:
        return Response(
            content=artifact.data,
            status_code=status.HTTP_200_OK,
            media_type=AUDIO_MEDIA_TYPE,
            headers=headers,
        )

    headers["Content-Range"] = byte_range.content_range(artifact.size)
    logger.debug(
        "Serving partial content",
        task_id=artifact.task_id,
        start=byte_range.start,
        end=byte_range.end,
        size=artifact.size,
    )
    return Response(
        content=ArtifactDelivery.slice(artifact, byte_range),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=AUDIO_MEDIA_TYPE,
        headers=headers,
    )


@router.get("/download/{task_id}", response_class=Response, responses=_media_responses)
async def download_audio(
    task_id: str,
    range_header: str | None = Header(default=None, alias="Range"),
) -> Response:
    """Download the MP3 of a finished task as an attachment."""
    artifact = await get_delivery().fetch(task_id)
    logger.info("Serving download", task_id=task_id, size_bytes=artifact.size)
    return _audio_response(artifact, range_header, "attachment")


@router.get("/stream/{task_id}", response_class=Response, responses=_media_responses)
async def stream_audio(
    task_id: str,
    range_header: str | None = Header(default=None, alias="Range"),
) -> Response:
    """Serve the MP3 inline for in-browser playback and seeking."""
    artifact = await get_delivery().fetch(task_id)
    return _audio_response(
        artifact,
        range_header,
        "inline",
        extra_headers={
            "Cache-Control": "public, max-age=3600",
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": "Range",
            "Access-Control-Expose-Headers": EXPOSED_HEADERS,
        },
    )
