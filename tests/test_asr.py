"""Tests for the process-wide ASR engine manager."""

import asyncio
import threading
import time

import numpy as np
import pytest

from app.errors import ModelLoadError, Timeout, TranscriptionError
from app.services.asr import ASREngineManager, EngineState, language_label

SILENCE = np.zeros(16000, dtype=np.float32)


class CountingLoader:
    def __init__(self, model=None, fail_times: int = 0, delay: float = 0.05):
        self.model = model if model is not None else object()
        self.fail_times = fail_times
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        if call <= self.fail_times:
            raise RuntimeError("weights missing")
        return self.model


async def test_concurrent_first_requests_share_one_load():
    loader = CountingLoader()
    manager = ASREngineManager(loader=loader, load_timeout=5)

    models = await asyncio.gather(*(manager.get_model() for _ in range(10)))

    assert loader.calls == 1
    assert all(m is loader.model for m in models)
    assert manager.state is EngineState.READY
    assert manager.load_attempts == 1

    # Ready handle is reused without another load
    await manager.get_model()
    assert loader.calls == 1


async def test_failed_load_reaches_every_waiter_then_retries():
    loader = CountingLoader(fail_times=1)
    manager = ASREngineManager(loader=loader, load_timeout=5)

    results = await asyncio.gather(*(manager.get_model() for _ in range(5)), return_exceptions=True)

    assert loader.calls == 1
    assert all(isinstance(r, ModelLoadError) for r in results)
    assert all(r is results[0] for r in results)
    assert manager.state is EngineState.UNLOADED
    assert "weights missing" in manager.status()["last_error"]

    model = await manager.get_model()
    assert model is loader.model
    assert loader.calls == 2
    assert manager.load_attempts == 2
    assert manager.state is EngineState.READY
    assert manager.status()["last_error"] is None


async def test_load_timeout_keeps_single_load_in_flight():
    loader = CountingLoader(delay=0.4)
    manager = ASREngineManager(loader=loader, load_timeout=0.05)

    with pytest.raises(Timeout):
        await manager.get_model()
    with pytest.raises(Timeout):
        await manager.get_model()

    assert manager.state is EngineState.LOADING
    assert loader.calls == 1
    assert loader.max_active == 1

    await asyncio.sleep(0.5)
    assert manager.state is EngineState.READY
    assert await manager.get_model() is loader.model
    assert loader.calls == 1
    assert manager.load_attempts == 1


async def test_cancelled_waiter_does_not_cancel_shared_load():
    loader = CountingLoader(delay=0.1)
    manager = ASREngineManager(loader=loader, load_timeout=5)

    first = asyncio.create_task(manager.get_model())
    second = asyncio.create_task(manager.get_model())
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second is loader.model
    assert loader.calls == 1


async def test_transcribe_maps_language_and_strips_text(fake_whisper):
    fake_whisper.text = "  मरीज़ का नाम सुनीता है  "
    manager = ASREngineManager(loader=lambda: fake_whisper, load_timeout=5, inference_timeout=5)

    result = await manager.transcribe(SILENCE, "hi")

    assert result.text == "मरीज़ का नाम सुनीता है"
    assert result.confidence == 0.0
    assert result.language == "hi"
    call = fake_whisper.calls[0]
    assert call["generate_kwargs"]["language"] == "hindi"
    assert call["inputs"]["sampling_rate"] == 16000


async def test_unknown_language_lets_model_detect(fake_whisper):
    manager = ASREngineManager(loader=lambda: fake_whisper, load_timeout=5, inference_timeout=5)

    await manager.transcribe(SILENCE, "xx")

    assert "language" not in fake_whisper.calls[0]["generate_kwargs"]


async def test_silence_returns_empty_text(fake_whisper):
    fake_whisper.text = "   "
    manager = ASREngineManager(loader=lambda: fake_whisper, load_timeout=5, inference_timeout=5)

    result = await manager.transcribe(SILENCE, "hi")

    assert result.text == ""


async def test_model_without_text_is_transcription_error():
    manager = ASREngineManager(
        loader=lambda: object(),
        invoke=lambda model, samples, language: {"chunks": []},
        load_timeout=5,
        inference_timeout=5,
    )
    with pytest.raises(TranscriptionError):
        await manager.transcribe(SILENCE)


async def test_model_exception_is_transcription_error():
    def broken(model, samples, language):
        raise ValueError("bad input features")

    manager = ASREngineManager(loader=lambda: object(), invoke=broken, load_timeout=5, inference_timeout=5)
    with pytest.raises(TranscriptionError, match="bad input features"):
        await manager.transcribe(SILENCE)


async def test_inference_timeout():
    def slow(model, samples, language):
        time.sleep(0.5)
        return {"text": "late"}

    manager = ASREngineManager(loader=lambda: object(), invoke=slow, load_timeout=5, inference_timeout=0.05)
    with pytest.raises(Timeout):
        await manager.transcribe(SILENCE)


class ConcurrencyCounter:
    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, model, samples, language):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return {"text": "ok"}


async def test_inference_serialized_when_enabled():
    counter = ConcurrencyCounter()
    manager = ASREngineManager(
        loader=lambda: object(), invoke=counter, load_timeout=5, inference_timeout=5, serialize_inference=True
    )

    await asyncio.gather(*(manager.transcribe(SILENCE) for _ in range(4)))

    assert counter.max_active == 1
    assert manager.status()["serialize_inference"] is True


async def test_timed_out_inference_still_holds_the_lock():
    counter = ConcurrencyCounter(delay=0.3)
    manager = ASREngineManager(
        loader=lambda: object(), invoke=counter, load_timeout=5, inference_timeout=0.05, serialize_inference=True
    )

    with pytest.raises(Timeout):
        await manager.transcribe(SILENCE)
    with pytest.raises(Timeout):
        await manager.transcribe(SILENCE)

    await asyncio.sleep(0.4)
    assert counter.calls == 2
    assert counter.max_active == 1
    assert counter.active == 0


async def test_inference_runs_concurrently_when_disabled():
    counter = ConcurrencyCounter()
    manager = ASREngineManager(
        loader=lambda: object(), invoke=counter, load_timeout=5, inference_timeout=5, serialize_inference=False
    )

    await asyncio.gather(*(manager.transcribe(SILENCE) for _ in range(4)))

    assert counter.max_active > 1


def test_language_label():
    assert language_label("hi") == "hindi"
    assert language_label("en-IN") == "english"
    assert language_label("marathi") == "marathi"
    assert language_label(None) is None
    assert language_label("zz") is None


def test_status_snapshot_before_load():
    manager = ASREngineManager(loader=lambda: object(), model_id="openai/whisper-small")
    status = manager.status()
    assert status["state"] == "unloaded"
    assert status["model_id"] == "openai/whisper-small"
    assert status["load_attempts"] == 0
