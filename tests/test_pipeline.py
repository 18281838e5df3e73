"""Tests for the end-to-end voice pipeline with stubbed models."""

import json
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest

from app.errors import NoSpeechDetected, NotFound, TranscodeError
from app.models.beneficiary import ResolutionStatus
from app.models.risk import RedFlagRequest
from app.models.transcript import JobStatus, TranscriptionJob
from app.services.audio import DecodedAudio
from app.services.beneficiary_resolver import BeneficiaryResolver
from app.services.pipeline import VoicePipeline, beneficiary_risk
from app.services.red_flags import RedFlagClassifier
from app.services.visit_extractor import VisitExtractor
from conftest import StubLLM, add_beneficiary, add_user

ONE_SECOND = DecodedAudio(samples=np.zeros(16000, dtype=np.float32))

VISIT_JSON = json.dumps({
    "patient_name": "Sunita",
    "visit_type": "emergency",
    "symptoms": ["heavy bleeding", "dizziness"],
    "symptom_severity": "severe",
    "vitals": {"blood_pressure": {"systolic": 90, "diastolic": 60}},
})
RED_FLAG_JSON = json.dumps({
    "isRedFlag": True,
    "riskScore": 85,
    "recommendation": "Take her to the district hospital now",
    "reasons": ["Heavy bleeding in third trimester"],
})


def _pipeline(asr_manager, alert_manager, visit_json=VISIT_JSON, red_flag_json=RED_FLAG_JSON) -> VoicePipeline:
    return VoicePipeline(
        asr=asr_manager,
        extractor=VisitExtractor(llm=StubLLM(visit_json)),
        resolver=BeneficiaryResolver(),
        classifier=RedFlagClassifier(llm=StubLLM(red_flag_json)),
        alerts=alert_manager,
    )


async def _caseload(db):
    await add_beneficiary(
        db, "ben-1", "Sunita Devi",
        linked_responder_id="asha-1", is_currently_pregnant=1, current_pregnancy_week=33,
        is_high_risk=1, anemia_status="moderate",
    )
    await add_beneficiary(db, "ben-2", "Meena Kumari", linked_responder_id="asha-1")


async def test_full_run_escalates_red_flag(db, asr_manager, alert_manager, fake_whisper, bus):
    await _caseload(db)
    fake_whisper.text = "Sunita ko bahut khoon aa raha hai aur chakkar aa rahe hain"
    inbox = bus.subscribe("asha-1")
    pipeline = _pipeline(asr_manager, alert_manager)
    job = TranscriptionJob(audio=b"webm-bytes", language="hi")

    with patch("app.services.pipeline.decode_audio", AsyncMock(return_value=ONE_SECOND)):
        result = await pipeline.run(job, "asha-1")

    assert job.status is JobStatus.DONE
    assert result.transcription == fake_whisper.text
    assert result.duration_seconds == 1.0
    assert result.resolution.status is ResolutionStatus.RESOLVED
    assert result.beneficiary.id == "ben-1"
    assert result.needs_manual_review is False
    assert result.red_flag.is_red_flag is True
    # high risk 30 + moderate anemia 15 + no visits 30
    assert result.risk.score == 75
    assert result.escalation.alert_created is True
    assert result.escalation.severity_level == "critical"
    assert inbox.get_nowait()["alert_id"] == result.escalation.alert_id


async def test_classifier_sees_pregnancy_context(db, asr_manager, alert_manager):
    await _caseload(db)
    classifier_llm = StubLLM(RED_FLAG_JSON)
    pipeline = _pipeline(asr_manager, alert_manager)
    pipeline.classifier = RedFlagClassifier(llm=classifier_llm)

    with patch("app.services.pipeline.decode_audio", AsyncMock(return_value=ONE_SECOND)):
        await pipeline.run(TranscriptionJob(audio=b"x"), "asha-1")

    assert "week 33" in classifier_llm.calls[0]["system"]


async def test_silence_is_no_speech(db, asr_manager, alert_manager, fake_whisper):
    fake_whisper.text = "  "
    pipeline = _pipeline(asr_manager, alert_manager)
    job = TranscriptionJob(audio=b"x")

    with patch("app.services.pipeline.decode_audio", AsyncMock(return_value=ONE_SECOND)):
        with pytest.raises(NoSpeechDetected):
            await pipeline.run(job, "asha-1")

    assert job.status is JobStatus.FAILED


async def test_transcode_failure_marks_job_failed(db, asr_manager, alert_manager):
    pipeline = _pipeline(asr_manager, alert_manager)
    job = TranscriptionJob(audio=b"x")

    with patch("app.services.pipeline.decode_audio", AsyncMock(side_effect=TranscodeError("ffmpeg exited with code 1"))):
        with pytest.raises(TranscodeError):
            await pipeline.transcribe(job)

    assert job.status is JobStatus.FAILED
    assert "ffmpeg" in job.error


async def test_unresolved_name_skips_risk_and_escalation(db, asr_manager, alert_manager):
    await _caseload(db)
    pipeline = _pipeline(asr_manager, alert_manager, visit_json='{"patient_name": "Kavita", "symptoms": ["fever"]}')

    with patch("app.services.pipeline.decode_audio", AsyncMock(return_value=ONE_SECOND)):
        result = await pipeline.run(TranscriptionJob(audio=b"x"), "asha-1")

    assert result.resolution.status is ResolutionStatus.NOT_FOUND
    assert result.needs_manual_review is True
    assert result.red_flag is not None
    assert result.risk is None
    assert result.escalation is None


async def test_quiet_visit_creates_no_alert(db, asr_manager, alert_manager):
    await add_beneficiary(db, "ben-2", "Meena Kumari")
    await db.execute(
        "INSERT INTO visits (id, beneficiary_id, completed_date, created_at) VALUES (?, ?, date('now'), datetime('now'))",
        ("visit-1", "ben-2"),
    )
    await db.commit()
    pipeline = _pipeline(asr_manager, alert_manager, visit_json='{"patient_name": "Meena", "visit_type": "routine_checkup"}')

    with patch("app.services.pipeline.decode_audio", AsyncMock(return_value=ONE_SECOND)):
        result = await pipeline.run(TranscriptionJob(audio=b"x"), "asha-1")

    assert result.red_flag is None
    assert result.risk.score == 0
    assert result.escalation.alert_created is False
    assert result.missing_fields == ["vitals"]
    assert result.follow_up_question == "कृपया BP, वज़न या तापमान बताएं।"


async def test_process_transcript_requires_text(asr_manager, alert_manager):
    with pytest.raises(NoSpeechDetected):
        await _pipeline(asr_manager, alert_manager).process_transcript("   ", "asha-1")


async def test_detect_red_flags_alerts_reporting_user(db, asr_manager, alert_manager):
    await add_user(db, "user-1", "Sunita Devi")
    await add_beneficiary(db, "ben-1", "Sunita Devi", user_id="user-1", linked_responder_id="asha-1")
    pipeline = _pipeline(asr_manager, alert_manager)

    result, outcome = await pipeline.detect_red_flags(
        RedFlagRequest(symptoms=["heavy bleeding"], isPregnant=True, pregnancyWeek=30, user_id="user-1")
    )

    assert result.is_red_flag is True
    assert outcome.alert_created is True
    alert_row = await db.fetch_one("SELECT * FROM alerts WHERE id = ?", (outcome.alert_id,))
    assert alert_row["description"] == "Red flag detected: Heavy bleeding in third trimester"
    assert json.loads(alert_row["symptoms_reported"]) == {"list": ["heavy bleeding"]}


async def test_detect_red_flags_without_profile(db, asr_manager, alert_manager):
    pipeline = _pipeline(asr_manager, alert_manager)

    _, outcome = await pipeline.detect_red_flags(RedFlagRequest(symptoms=["heavy bleeding"], user_id="nobody"))

    assert outcome.alert_created is False


async def test_beneficiary_risk_not_found(db):
    with pytest.raises(NotFound):
        await beneficiary_risk("missing")
