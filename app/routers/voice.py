import json

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import ValidationError

from app import config
from app.errors import InvalidInput
from app.models.transcript import TranscribeResponse, TranscriptionJob
from app.models.visit import ProcessRequest, ProcessResponse, VoicePipelineResponse
from app.services.asr import ASREngineManager, get_asr_manager
from app.services.audio import extension_for_upload
from app.services.pipeline import VoicePipeline, get_pipeline

router = APIRouter(tags=["voice"])


async def _job_from_upload(audio, language: str | None) -> TranscriptionJob:
    # form fields that are not files arrive as plain strings
    if audio is None or isinstance(audio, str):
        raise InvalidInput("No audio file provided")
    too_large = InvalidInput(f"Audio file too large (limit {config.AUDIO_MAX_BYTES} bytes)")
    if audio.size is not None and audio.size > config.AUDIO_MAX_BYTES:
        raise too_large
    # one byte past the limit is enough to know it is over
    data = await audio.read(config.AUDIO_MAX_BYTES + 1)
    if not data:
        raise InvalidInput("No audio file provided")
    if len(data) > config.AUDIO_MAX_BYTES:
        raise too_large
    return TranscriptionJob(
        audio=data,
        extension=extension_for_upload(audio.filename, audio.content_type),
        content_type=audio.content_type,
        language=(language or config.DEFAULT_LANGUAGE).strip() or config.DEFAULT_LANGUAGE,
    )


@router.post("/api/voice/transcribe", response_model=TranscribeResponse)
@router.post("/api/whisper/transcribe", response_model=TranscribeResponse, include_in_schema=False)
async def transcribe(
    audio: UploadFile | None = File(None),
    language: str = Form(config.DEFAULT_LANGUAGE),
    pipeline: VoicePipeline = Depends(get_pipeline),
):
    """Transcribe one uploaded clip."""
    job = await _job_from_upload(audio, language)
    job = await pipeline.transcribe(job)
    return TranscribeResponse(transcript=job.transcript or "", confidence=job.confidence, language=job.language)


@router.post("/api/voice/process", response_model=None)
async def process(
    request: Request, pipeline: VoicePipeline = Depends(get_pipeline)
) -> ProcessResponse | VoicePipelineResponse:
    """Extract a visit record from text, or run the full pipeline on an audio upload."""
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" in content_type:
        form = await request.form()
        job = await _job_from_upload(form.get("audio"), form.get("language"))
        return await pipeline.run(job, form.get("asha_worker_id") or None)

    try:
        body = ProcessRequest.model_validate(await request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise InvalidInput("Invalid request body") from e
    return await pipeline.process_transcript(body.transcription, body.asha_worker_id)


@router.get("/api/voice/asr/status")
async def asr_status(asr: ASREngineManager = Depends(get_asr_manager)):
    return asr.status()
