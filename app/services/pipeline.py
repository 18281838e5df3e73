"""Voice health-report pipeline.

Stages run strictly in order for a single request:
transcode -> transcribe -> extract -> resolve -> risk-score -> escalate.
Risk scoring and escalation only run once a beneficiary is resolved.
"""

import logging

from app import config
from app.errors import InvalidInput, NoSpeechDetected, NotFound, PipelineError
from app.models.alert import EscalationOutcome
from app.models.beneficiary import Beneficiary, BeneficiaryMatch
from app.models.risk import RedFlagRequest, RedFlagResult, RiskAssessment, RiskProfile
from app.models.transcript import JobStatus, TranscriptionJob
from app.models.visit import ProcessResponse, VoicePipelineResponse
from app.services import repository
from app.services.alerts import AlertManager, escalation_signal, get_alert_manager
from app.services.asr import ASREngineManager, get_asr_manager
from app.services.audio import decode_audio
from app.services.beneficiary_resolver import BeneficiaryResolver, needs_manual_review
from app.services.red_flags import RedFlagClassifier
from app.services.risk_engine import calculate_risk_score
from app.services.visit_extractor import VisitExtractor, follow_up_question, missing_fields

logger = logging.getLogger(__name__)


def risk_profile(beneficiary: Beneficiary) -> RiskProfile:
    return RiskProfile(
        is_high_risk=beneficiary.is_high_risk,
        anemia_status=beneficiary.anemia_status,
        previous_complications=beneficiary.previous_complications,
        current_pregnancy_week=beneficiary.current_pregnancy_week,
        last_hemoglobin_level=beneficiary.last_hemoglobin_level,
    )


async def assess_beneficiary(beneficiary: Beneficiary) -> RiskAssessment:
    logs = await repository.recent_health_logs(beneficiary.id)
    visits = await repository.recent_visits(beneficiary.id)
    return calculate_risk_score(risk_profile(beneficiary), logs, visits)


class VoicePipeline:
    def __init__(
        self,
        asr: ASREngineManager | None = None,
        extractor: VisitExtractor | None = None,
        resolver: BeneficiaryResolver | None = None,
        classifier: RedFlagClassifier | None = None,
        alerts: AlertManager | None = None,
    ) -> None:
        self.asr = asr or get_asr_manager()
        self.extractor = extractor or VisitExtractor()
        self.resolver = resolver or BeneficiaryResolver()
        self.classifier = classifier or RedFlagClassifier()
        self.alerts = alerts or get_alert_manager()

    async def transcribe(self, job: TranscriptionJob) -> TranscriptionJob:
        """Decode and transcribe one clip, recording progress on the job."""
        language = job.language or config.DEFAULT_LANGUAGE
        try:
            job.status = JobStatus.DECODING
            audio = await decode_audio(job.audio, job.extension)
            job.duration_seconds = audio.duration_seconds

            job.status = JobStatus.TRANSCRIBING
            result = await self.asr.transcribe(audio.samples, language)
            if not result.text:
                raise NoSpeechDetected()
        except PipelineError as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            raise

        job.transcript = result.text
        job.confidence = result.confidence
        job.language = language
        job.status = JobStatus.DONE
        logger.info("Transcribed %.1fs of audio into %d chars", audio.duration_seconds, len(result.text))
        return job

    async def process_transcript(self, transcription: str, asha_worker_id: str | None) -> ProcessResponse:
        """Extract visit fields from text and match the patient to the caseload."""
        if not transcription or not transcription.strip():
            raise NoSpeechDetected()

        visit = await self.extractor.extract(transcription)
        resolution, beneficiary = await self.resolver.resolve(visit.patient_name, asha_worker_id)
        missing = missing_fields(visit)
        return ProcessResponse(
            extracted_data=visit,
            beneficiary=BeneficiaryMatch(id=beneficiary.id, full_name=beneficiary.full_name) if beneficiary else None,
            resolution=resolution,
            transcription=transcription,
            needs_manual_review=needs_manual_review(resolution),
            missing_fields=missing,
            follow_up_question=follow_up_question(missing),
            is_complete=not missing,
        )

    async def run(self, job: TranscriptionJob, asha_worker_id: str | None) -> VoicePipelineResponse:
        await self.transcribe(job)
        processed = await self.process_transcript(job.transcript or "", asha_worker_id)
        response = VoicePipelineResponse(
            **processed.model_dump(),
            language=job.language,
            confidence=job.confidence,
            duration_seconds=job.duration_seconds,
        )

        beneficiary = None
        if processed.resolution.beneficiary_id:
            beneficiary = await repository.get_beneficiary(processed.resolution.beneficiary_id)

        symptoms = processed.extracted_data.symptoms
        if symptoms:
            response.red_flag = await self.classifier.classify(
                symptoms,
                is_pregnant=beneficiary.is_currently_pregnant if beneficiary else False,
                pregnancy_week=beneficiary.current_pregnancy_week if beneficiary else None,
            )

        if beneficiary is None:
            return response

        response.risk = await assess_beneficiary(beneficiary)
        signal = escalation_signal(response.red_flag, response.risk, symptoms=symptoms)
        if signal is not None:
            response.escalation = await self.alerts.escalate(
                signal,
                beneficiary,
                triggered_by_user_id=asha_worker_id,
                voice_transcription=job.transcript,
            )
        else:
            response.escalation = EscalationOutcome()
        return response

    async def detect_red_flags(self, request: RedFlagRequest) -> tuple[RedFlagResult, EscalationOutcome]:
        """Classify reported symptoms; raise an alert for the reporting user on a red flag."""
        symptoms = [s.strip() for s in request.symptoms or [] if s and s.strip()]
        if not symptoms:
            raise InvalidInput("Symptoms array is required")
        result = await self.classifier.classify(symptoms, request.isPregnant, request.pregnancyWeek)
        if not result.is_red_flag or not request.user_id:
            return result, EscalationOutcome()

        beneficiary = await repository.get_beneficiary_for_user(request.user_id)
        if beneficiary is None:
            logger.info("Red flag for user %s without a beneficiary profile; no alert", request.user_id)
            return result, EscalationOutcome()

        signal = escalation_signal(result, None, symptoms=symptoms)
        outcome = await self.alerts.escalate(signal, beneficiary, triggered_by_user_id=request.user_id)
        return result, outcome


async def beneficiary_risk(beneficiary_id: str) -> RiskAssessment:
    beneficiary = await repository.get_beneficiary(beneficiary_id)
    if beneficiary is None:
        raise NotFound(f"Beneficiary {beneficiary_id} not found")
    return await assess_beneficiary(beneficiary)


_pipeline: VoicePipeline | None = None


def get_pipeline() -> VoicePipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = VoicePipeline()
    return _pipeline
