"""Process-wide speech recognition engine.

The model is loaded lazily on first use and reused for the rest of the
process. Concurrent first requests share one in-flight load: the state
lock guards the Unloaded -> Loading -> Ready transitions and the pending
load task, so at most one load runs at a time. A failed load resets the
manager to Unloaded and every waiter of that attempt gets the same
``ModelLoadError``; the next request starts a fresh attempt. A waiter
that runs out of time gets ``Timeout`` while the load keeps running and
stays joinable, since the loader thread cannot be interrupted.

Inference runs in a worker thread. Hugging Face pipelines are not
documented as thread-safe, so calls are serialized behind a FIFO lock
unless ``ASR_SERIALIZE_INFERENCE`` is turned off. The lock is held until
the worker thread returns, even when its caller has already timed out.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from app import config
from app.errors import ModelLoadError, Timeout, TranscriptionError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000

# Short language codes accepted from clients -> Whisper language labels.
LANGUAGE_LABELS = {
    "hi": "hindi",
    "en": "english",
    "bn": "bengali",
    "mr": "marathi",
    "gu": "gujarati",
    "pa": "punjabi",
    "ta": "tamil",
    "te": "telugu",
    "kn": "kannada",
    "ml": "malayalam",
    "ur": "urdu",
    "ne": "nepali",
}


class EngineState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


@dataclass
class TranscriptResult:
    text: str
    confidence: float
    language: str | None


def language_label(code: str | None) -> str | None:
    """Map ``hi``/``en``-style codes to the model's label; unknown codes auto-detect."""
    if not code:
        return None
    token = code.strip().lower().replace("_", "-").split("-")[0]
    if token in LANGUAGE_LABELS:
        return LANGUAGE_LABELS[token]
    if token in LANGUAGE_LABELS.values():
        return token
    return None


def load_whisper_pipeline() -> Any:
    """Build the transformers ASR pipeline. Runs in a worker thread."""
    import torch
    from transformers import pipeline

    device = config.ASR_DEVICE or ("cuda:0" if torch.cuda.is_available() else "cpu")
    return pipeline(
        "automatic-speech-recognition",
        model=config.ASR_MODEL_ID,
        chunk_length_s=30,
        stride_length_s=5,
        device=device,
    )


def invoke_pipeline(model: Any, samples: np.ndarray, language: str | None) -> Any:
    generate_kwargs = {"task": "transcribe"}
    if language:
        generate_kwargs["language"] = language
    return model(
        {"raw": samples, "sampling_rate": SAMPLE_RATE},
        generate_kwargs=generate_kwargs,
    )


def _result_text(result: Any) -> str | None:
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        text = result.get("text")
        return text if isinstance(text, str) else None
    return None


def _result_confidence(result: Any) -> float:
    if not isinstance(result, dict):
        return 0.0
    chunks = result.get("chunks") or []
    if chunks and isinstance(chunks[0], dict):
        try:
            return max(0.0, min(1.0, float(chunks[0].get("confidence") or 0.0)))
        except (TypeError, ValueError):
            return 0.0
    return 0.0


def _consume_result(fut: asyncio.Future) -> None:
    # Retrieve the outcome of work nobody may still be awaiting.
    if not fut.cancelled():
        fut.exception()


class ASREngineManager:
    def __init__(
        self,
        loader: Callable[[], Any] | None = None,
        invoke: Callable[[Any, np.ndarray, str | None], Any] | None = None,
        *,
        model_id: str | None = None,
        load_timeout: float | None = None,
        inference_timeout: float | None = None,
        serialize_inference: bool | None = None,
    ) -> None:
        self._loader = loader or load_whisper_pipeline
        self._invoke = invoke or invoke_pipeline
        self.model_id = model_id or config.ASR_MODEL_ID
        self._load_timeout = load_timeout or config.ASR_LOAD_TIMEOUT_SECONDS
        self._inference_timeout = inference_timeout or config.ASR_INFERENCE_TIMEOUT_SECONDS
        if serialize_inference is None:
            serialize_inference = config.ASR_SERIALIZE_INFERENCE

        self._state = EngineState.UNLOADED
        self._model: Any = None
        self._inflight: asyncio.Task | None = None
        self._state_lock = asyncio.Lock()
        self._inference_lock = asyncio.Lock() if serialize_inference else None

        self.load_attempts = 0
        self.last_error: str | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def serializes_inference(self) -> bool:
        return self._inference_lock is not None

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "model_id": self.model_id,
            "load_attempts": self.load_attempts,
            "last_error": self.last_error,
            "serialize_inference": self.serializes_inference,
        }

    async def get_model(self) -> Any:
        """Return the ready model, joining or starting the single in-flight load."""
        async with self._state_lock:
            if self._state is EngineState.READY:
                return self._model
            if self._inflight is None:
                self._state = EngineState.LOADING
                self.load_attempts += 1
                self._inflight = asyncio.create_task(self._load(), name="asr-model-load")
                self._inflight.add_done_callback(_consume_result)
            inflight = self._inflight
        # shield: a waiter giving up (timeout or cancel) must not stop the shared load
        try:
            return await asyncio.wait_for(asyncio.shield(inflight), timeout=self._load_timeout)
        except asyncio.TimeoutError:
            logger.error("ASR model load still running after %.0fs", self._load_timeout)
            raise Timeout(f"ASR model load exceeded {self._load_timeout:.0f}s") from None

    async def _load(self) -> Any:
        # Not bounded here: a worker thread cannot be interrupted, so the load
        # stays in flight (and joinable) until the loader itself returns.
        logger.info("Loading ASR model %s (attempt %d)", self.model_id, self.load_attempts)
        started = time.perf_counter()
        try:
            model = await asyncio.to_thread(self._loader)
        except Exception as e:
            async with self._state_lock:
                self._model = None
                self._inflight = None
                self._state = EngineState.UNLOADED
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error("ASR model load failed: %s", self.last_error)
            raise ModelLoadError(f"ASR model load failed: {e}") from e

        async with self._state_lock:
            self._model = model
            self._inflight = None
            self._state = EngineState.READY
        self.last_error = None
        logger.info("ASR model ready in %.1fs", time.perf_counter() - started)
        return model

    async def _run_inference(self, model: Any, samples: np.ndarray, label: str | None) -> Any:
        lock = self._inference_lock
        if lock is not None:
            await lock.acquire()
        work = asyncio.ensure_future(asyncio.to_thread(self._invoke, model, samples, label))

        def finished(fut: asyncio.Future) -> None:
            # the lock follows the worker thread, not the caller that timed out
            if lock is not None:
                lock.release()
            _consume_result(fut)

        work.add_done_callback(finished)
        try:
            return await asyncio.wait_for(asyncio.shield(work), timeout=self._inference_timeout)
        except asyncio.TimeoutError:
            logger.error("ASR inference still running after %.0fs", self._inference_timeout)
            raise Timeout(f"ASR inference exceeded {self._inference_timeout:.0f}s") from None

    async def transcribe(self, samples: np.ndarray, language: str | None = None) -> TranscriptResult:
        """Recognize speech in mono 16 kHz float32 PCM.

        Returns the stripped text, which may be empty; callers decide how to
        treat silence.
        """
        model = await self.get_model()
        label = language_label(language)
        try:
            result = await self._run_inference(model, samples, label)
        except Timeout:
            raise
        except Exception as e:
            logger.error("ASR inference failed: %s", e)
            raise TranscriptionError(f"ASR inference failed: {e}") from e

        text = _result_text(result)
        if text is None:
            raise TranscriptionError("ASR model returned no text")
        return TranscriptResult(text=text.strip(), confidence=_result_confidence(result), language=language)


_manager: ASREngineManager | None = None


def get_asr_manager() -> ASREngineManager:
    global _manager
    if _manager is None:
        _manager = ASREngineManager()
    return _manager
