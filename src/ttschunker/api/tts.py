import logging

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Response, status

from ttschunker.models import (
    JobAcceptedResponse,
    JobStatusResponse,
    PodcastRequest,
    PodcastResponse,
    TTSRequest,
    TTSResponse,
)
from ttschunker.services.job_store import JobStore
from ttschunker.services.pipeline import TTSPipeline

from .dependencies import get_jobs, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tts", tags=["TTS"])


@router.post("/chunked", response_model=TTSResponse)
async def synthesize_chunked(
    request: TTSRequest, pipeline: TTSPipeline = Depends(get_pipeline)
) -> TTSResponse:
    """Synthesize a document and wait for the merged result."""
    logger.info(f"Chunked synthesis requested for session {request.session_id}")
    result = await pipeline.run(request)
    return result.to_response()


@router.post("", response_model=JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    request: TTSRequest,
    background_tasks: BackgroundTasks,
    pipeline: TTSPipeline = Depends(get_pipeline),
) -> JobAcceptedResponse:
    """Queue a synthesis job and return where to poll for it."""
    pipeline.submit(request)
    background_tasks.add_task(pipeline.run_job, request)
    sid = request.session_id
    return JobAcceptedResponse(
        session_id=sid,
        status_url=f"/tts/{sid}/status",
        result_url=f"/tts/{sid}/audio",
    )


@router.get("/{session_id}/status", response_model=JobStatusResponse)
async def job_status(session_id: str, jobs: JobStore = Depends(get_jobs)) -> JobStatusResponse:
    snapshot = jobs.get(session_id)
    return JobStatusResponse(
        session_id=snapshot.session_id,
        status=snapshot.status,
        progress=snapshot.progress,
        failed_indices=list(snapshot.failed_indices),
        error=snapshot.error_message,
    )


@router.get("/{session_id}/audio")
async def job_audio(session_id: str, jobs: JobStore = Depends(get_jobs)) -> Response:
    """Return the merged audio of a finished job; 404 until it is done."""
    audio, media_type = jobs.get_audio(session_id)
    return Response(content=audio, media_type=media_type)


@router.post("/{session_id}/podcast", response_model=PodcastResponse)
async def create_podcast(
    session_id: str,
    request: PodcastRequest | None = Body(default=None),
    pipeline: TTSPipeline = Depends(get_pipeline),
) -> PodcastResponse:
    """Wrap the session's merged audio with intro and outro bumpers."""
    request = request or PodcastRequest()
    return await pipeline.create_program(session_id, request.intro_key, request.outro_key)
