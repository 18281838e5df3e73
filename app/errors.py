"""Exception hierarchy for the voice health-report pipeline.

Infrastructure failures propagate as these types and are mapped to HTTP
status codes in ``register_error_handlers``. Stage-local soft failures
(unparseable extraction, no caseload match) are returned as data instead.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app import config

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500
    error_type = "pipeline_error"
    public_message = "Failed to process request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class InvalidInput(PipelineError):
    """Malformed, missing or oversized request data."""

    status_code = 400
    error_type = "invalid_input"
    public_message = "Invalid input"


class NoSpeechDetected(PipelineError):
    """The model ran successfully but heard nothing."""

    status_code = 400
    error_type = "no_speech_detected"
    public_message = "No speech detected or transcription is empty"


class Unauthenticated(PipelineError):
    status_code = 401
    error_type = "unauthorized"
    public_message = "Unauthorized"


class NotFound(PipelineError):
    status_code = 404
    error_type = "not_found"
    public_message = "Not found"


class ProfileNotFound(NotFound):
    error_type = "profile_not_found"
    public_message = "User profile not found"


class TranscodeError(PipelineError):
    """The external audio transcoder failed or could not be launched."""

    error_type = "transcode_error"
    public_message = "Failed to decode audio"


class ModelLoadError(PipelineError):
    """The speech recognition model failed to initialize."""

    status_code = 503
    error_type = "model_load_error"
    public_message = "Speech recognition model is unavailable"


class TranscriptionError(PipelineError):
    """The speech recognition model raised or returned no text."""

    error_type = "transcription_error"
    public_message = "Failed to transcribe audio"


class ExtractionParseError(PipelineError):
    """Model output for visit extraction was not parseable. Never surfaced."""

    error_type = "extraction_parse_error"


class StoreError(PipelineError):
    error_type = "store_error"
    public_message = "Storage operation failed"


class Timeout(PipelineError):
    """A transcoder, model or language-model call exceeded its time budget."""

    status_code = 504
    error_type = "timeout"
    public_message = "Processing timed out"


def error_body(exc: PipelineError) -> dict:
    message = exc.public_message
    if isinstance(exc, (InvalidInput, NotFound, NoSpeechDetected)):
        message = str(exc)
    body = {"error": message, "type": exc.error_type}
    if config.DEV_MODE:
        body["detail"] = str(exc)
    return body


def register_error_handlers(app: FastAPI) -> None:
    """Register exception-to-HTTP-status mappings."""

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        content = {"error": "Invalid request body", "type": "invalid_input"}
        if config.DEV_MODE:
            content["detail"] = str(exc.errors())
        return JSONResponse(status_code=400, content=content)
