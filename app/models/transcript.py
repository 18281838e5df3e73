from enum import Enum

from pydantic import BaseModel


class JobStatus(str, Enum):
    PENDING = "pending"
    DECODING = "decoding"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    FAILED = "failed"


class TranscriptionJob(BaseModel):
    """One uploaded clip on its way to text. Lives for a single request."""

    audio: bytes
    extension: str = ".webm"
    content_type: str | None = None
    language: str | None = None
    status: JobStatus = JobStatus.PENDING
    transcript: str | None = None
    confidence: float = 0.0
    duration_seconds: float | None = None
    error: str | None = None


class TranscribeResponse(BaseModel):
    transcript: str
    confidence: float
    language: str
