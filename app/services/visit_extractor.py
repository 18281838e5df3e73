"""Turn a worker's spoken visit notes into an ``ExtractedVisit``.

Extraction soft-fails: unparseable model output, or no configured backend,
yields an all-empty record so the rest of the pipeline still runs. Only
timeouts propagate.
"""

import logging
import math
import re
from dataclasses import dataclass

from pydantic import ValidationError

from app.errors import ExtractionParseError, Timeout
from app.models.visit import ExtractedVisit, VisitVitals
from app.services.llm import LLMClient, LLMUnavailable, get_llm_client, parse_json_object

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.1

SYSTEM_PROMPT = """You are a medical data extraction assistant. Extract structured JSON from an ASHA worker's home visit notes.

RULES:
- Output ONLY valid JSON, no markdown, no explanations
- Use null for missing fields and [] for missing lists
- Detect the patient name from context
- Never guess vital signs that were not spoken
- The notes may be in Hindi, English or a mix of both

OUTPUT FORMAT:
{
  "patient_name": string | null,
  "visit_type": "routine_checkup" | "follow_up" | "emergency" | null,
  "vitals": {
    "blood_pressure": {"systolic": number, "diastolic": number} | null,
    "weight_kg": number | null,
    "temperature_celsius": number | null
  },
  "symptoms": string[],
  "symptom_severity": "mild" | "moderate" | "severe" | null,
  "services_provided": string[],
  "medicines_distributed": string[],
  "counseling_topics": string[],
  "observations": string | null,
  "concerns_noted": string | null,
  "follow_up_required": boolean,
  "next_visit_date": "YYYY-MM-DD" | null,
  "referral_needed": boolean,
  "referral_reason": string | null,
  "confidence": number between 0 and 1 | null
}"""

# Follow-up prompts asked back to the worker, first missing field wins.
FOLLOW_UP_QUESTIONS = {
    "patient_name": "कृपया मरीज़ का नाम बताएं।",
    "vitals": "कृपया BP, वज़न या तापमान बताएं।",
    "visit_type": "यह कौन सी विज़िट है - routine checkup, follow up, या emergency?",
}

_VISIT_TYPES = {"routine_checkup", "follow_up", "emergency"}
_SEVERITIES = {"mild", "moderate", "severe"}
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class Parsed:
    visit: ExtractedVisit


@dataclass
class Unparseable:
    reason: str
    raw: str = ""


ExtractionOutcome = Parsed | Unparseable


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text_list(value: object) -> list[str]:
    if isinstance(value, str):
        value = [part for part in re.split(r"[,;]", value)]
    if not isinstance(value, list):
        return []
    return [item for item in (_text(v) for v in value) if item]


def _number(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = re.search(r"-?\d+(?:\.\d+)?", str(value))
        if not match:
            return None
        number = float(match.group(0))
    # json.loads accepts NaN and Infinity
    return number if math.isfinite(number) else None


def _flag(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _choice(value: object, allowed: set[str]) -> str | None:
    text = _text(value)
    if not text:
        return None
    token = text.lower().replace(" ", "_").replace("-", "_")
    return token if token in allowed else None


def _coerce_vitals(raw: object) -> VisitVitals:
    if not isinstance(raw, dict):
        return VisitVitals()
    bp = raw.get("blood_pressure")
    systolic = raw.get("systolic")
    diastolic = raw.get("diastolic")
    if isinstance(bp, dict):
        systolic = bp.get("systolic", systolic)
        diastolic = bp.get("diastolic", diastolic)
    elif isinstance(bp, str) and "/" in bp:
        systolic, diastolic = bp.split("/", 1)

    systolic = _number(systolic)
    diastolic = _number(diastolic)
    temperature = _number(raw.get("temperature_celsius", raw.get("temperature_c")))
    return VisitVitals(
        systolic=int(round(systolic)) if systolic is not None else None,
        diastolic=int(round(diastolic)) if diastolic is not None else None,
        weight_kg=_number(raw.get("weight_kg")),
        temperature_c=temperature,
    )


def _coerce_confidence(data: dict) -> float | None:
    value = _number(data.get("confidence", data.get("extraction_confidence")))
    if value is None:
        return None
    if value > 1.0:
        value = value / 100.0
    return max(0.0, min(1.0, value))


def coerce_visit(data: dict) -> ExtractedVisit:
    """Normalize a loosely shaped model payload into an ``ExtractedVisit``."""
    next_visit = _text(data.get("next_visit_date"))
    if next_visit and not _DATE_RE.match(next_visit):
        next_visit = None
    return ExtractedVisit(
        patient_name=_text(data.get("patient_name")),
        visit_type=_choice(data.get("visit_type"), _VISIT_TYPES),
        symptoms=_text_list(data.get("symptoms")),
        symptom_severity=_choice(data.get("symptom_severity"), _SEVERITIES),
        vitals=_coerce_vitals(data.get("vitals")),
        services_provided=_text_list(data.get("services_provided")),
        medicines_distributed=_text_list(data.get("medicines_distributed")),
        counseling_topics=_text_list(data.get("counseling_topics")),
        observations=_text(data.get("observations")),
        concerns_noted=_text(data.get("concerns_noted")),
        follow_up_required=_flag(data.get("follow_up_required")),
        next_visit_date=next_visit,
        referral_needed=_flag(data.get("referral_needed")),
        referral_reason=_text(data.get("referral_reason")),
        extraction_confidence=_coerce_confidence(data),
    )


def parse_extraction(raw: str) -> ExtractionOutcome:
    try:
        data = parse_json_object(raw)
    except ValueError as e:
        return Unparseable(reason=f"invalid JSON: {e}", raw=raw)
    try:
        return Parsed(visit=coerce_visit(data))
    except ValidationError as e:
        return Unparseable(reason=f"schema mismatch: {e.error_count()} errors", raw=raw)
    except (ValueError, TypeError, OverflowError) as e:
        return Unparseable(reason=f"unusable values: {e}", raw=raw)


def missing_fields(visit: ExtractedVisit) -> list[str]:
    missing = []
    if not visit.patient_name:
        missing.append("patient_name")
    if not visit.has_vitals():
        missing.append("vitals")
    if not visit.visit_type:
        missing.append("visit_type")
    return missing


def follow_up_question(missing: list[str]) -> str | None:
    if not missing:
        return None
    return FOLLOW_UP_QUESTIONS.get(missing[0])


class VisitExtractor:
    def __init__(self, llm: LLMClient | None = None) -> None:
        self._llm = llm

    @property
    def llm(self) -> LLMClient:
        return self._llm or get_llm_client()

    async def extract_outcome(self, transcript: str) -> ExtractionOutcome:
        if not transcript or not transcript.strip():
            return Unparseable(reason="empty transcript")
        try:
            raw = await self.llm.complete_text(
                system=SYSTEM_PROMPT,
                user=f'VISIT NOTES: "{transcript.strip()}"',
                temperature=EXTRACTION_TEMPERATURE,
                max_tokens=800,
            )
        except Timeout:
            raise
        except LLMUnavailable:
            return Unparseable(reason="no language model configured")
        except Exception as e:
            logger.error("Visit extraction call failed: %s", e)
            return Unparseable(reason=f"backend error: {e}")
        return parse_extraction(raw)

    async def extract(self, transcript: str) -> ExtractedVisit:
        """Extract visit fields; any soft failure becomes an empty record."""
        outcome = await self.extract_outcome(transcript)
        if isinstance(outcome, Parsed):
            logger.info(
                "Extracted visit: name=%s symptoms=%d vitals=%s",
                bool(outcome.visit.patient_name),
                len(outcome.visit.symptoms),
                outcome.visit.has_vitals(),
            )
            return outcome.visit
        err = ExtractionParseError(outcome.reason)
        logger.warning("Visit extraction returned empty record: %s", err)
        return ExtractedVisit()
