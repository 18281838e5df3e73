"""Symptom red-flag classification.

The language model makes the call; this module only enforces the shape of
its answer. When no model is configured, or its answer cannot be read, a
keyword screen over the danger-sign catalog stands in.
"""

import logging
from dataclasses import dataclass

from app.errors import Timeout
from app.models.risk import RedFlagResult
from app.services.llm import LLMClient, LLMUnavailable, get_llm_client, parse_json_object

logger = logging.getLogger(__name__)

UNABLE_TO_ASSESS = "Unable to assess. Please consult your ASHA worker."

CLASSIFIER_PROMPT = """You are a maternal health risk assessment assistant. Analyze the reported symptoms and decide whether they indicate a red flag condition.

{context}

Red flag conditions include:
- Heavy vaginal bleeding
- Severe abdominal pain
- High fever (>38°C)
- Severe headache with vision problems
- Seizures or convulsions
- Decreased or no fetal movement (after 20 weeks)
- Water breaking before 37 weeks
- Signs of preeclampsia (swelling, headache, vision changes)
- Fainting or difficulty breathing

Symptoms may be written in Hindi, English or a mix of both.

Return ONLY a JSON object with:
- isRedFlag: boolean
- riskScore: number (0-100)
- recommendation: string (in simple language)
- reasons: array of strings explaining the assessment"""


@dataclass(frozen=True)
class DangerSign:
    id: str
    name: str
    name_hindi: str
    severity: str  # high | critical
    action: str
    keywords: tuple[str, ...]
    pregnancy_only: bool = False


DANGER_SIGNS: tuple[DangerSign, ...] = (
    DangerSign(
        "heavy_bleeding", "Heavy Bleeding", "भारी रक्तस्राव", "critical",
        "Seek immediate medical help",
        ("bleeding", "blood", "खून", "रक्तस्राव", "khoon"),
    ),
    DangerSign(
        "severe_pain", "Severe Abdominal Pain", "तेज़ पेट दर्द", "critical",
        "Go to hospital immediately",
        ("severe pain", "abdominal pain", "stomach pain", "पेट दर्द", "तेज़ दर्द", "बहुत दर्द"),
    ),
    DangerSign(
        "high_fever", "High Fever", "तेज़ बुखार", "high",
        "Contact ASHA worker or visit health center",
        ("high fever", "fever", "बुखार", "bukhar"),
    ),
    DangerSign(
        "no_fetal_movement", "No Fetal Movement", "बच्चा नहीं हिल रहा", "critical",
        "Go to hospital immediately",
        ("baby not moving", "no fetal movement", "reduced fetal movement", "बच्चा नहीं हिल"),
        pregnancy_only=True,
    ),
    DangerSign(
        "severe_headache", "Severe Headache with Vision Problems", "तेज़ सिर दर्द और दिखाई न देना", "critical",
        "Emergency - go to hospital now",
        ("severe headache", "blurred vision", "vision problem", "सिर दर्द", "धुंधला"),
    ),
    DangerSign(
        "swelling", "Severe Swelling", "तेज़ सूजन", "high",
        "Contact health center immediately",
        ("swelling", "swollen", "सूजन"),
        pregnancy_only=True,
    ),
    DangerSign(
        "water_breaking", "Water Breaking Before 37 Weeks", "37 सप्ताह से पहले पानी निकलना", "critical",
        "Go to hospital immediately",
        ("water broke", "water breaking", "leaking fluid", "पानी टूट", "पानी निकल"),
        pregnancy_only=True,
    ),
    DangerSign(
        "fainting", "Fainting or Dizziness", "बेहोशी या चक्कर", "critical",
        "Emergency - call 108 or go to hospital",
        ("faint", "unconscious", "dizzy", "dizziness", "बेहोश", "चक्कर", "behosh", "chakkar"),
    ),
    DangerSign(
        "breathing_difficulty", "Difficulty Breathing", "सांस लेने में तकलीफ", "critical",
        "Emergency - go to hospital immediately",
        ("breathing", "breathless", "shortness of breath", "सांस"),
    ),
    DangerSign(
        "severe_vomiting", "Severe Vomiting", "तेज़ उल्टी", "high",
        "Visit health center to prevent dehydration",
        ("vomiting", "vomit", "उल्टी", "ulti"),
        pregnancy_only=True,
    ),
    DangerSign(
        "convulsions", "Seizures or Convulsions", "दौरा", "critical",
        "Emergency - call 108 or go to hospital",
        ("convulsion", "seizure", "fits", "दौरा"),
    ),
)

KEYWORD_SCORES = {"critical": 90, "high": 75}


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def keyword_screen(symptoms: list[str], is_pregnant: bool = False) -> RedFlagResult:
    """Match symptom text against the danger-sign catalog."""
    text = " ".join(symptoms).lower()
    matched = [
        sign for sign in DANGER_SIGNS
        if (is_pregnant or not sign.pregnancy_only)
        and any(keyword.lower() in text for keyword in sign.keywords)
    ]
    if not matched:
        return RedFlagResult(
            is_red_flag=False,
            risk_score=0,
            reasons=[],
            recommended_action=UNABLE_TO_ASSESS,
            source="keyword_screen",
        )

    worst = next((s for s in matched if s.severity == "critical"), matched[0])
    return RedFlagResult(
        is_red_flag=True,
        risk_score=KEYWORD_SCORES[worst.severity],
        reasons=[f"{s.name} ({s.name_hindi})" for s in matched],
        recommended_action=worst.action,
        source="keyword_screen",
    )


def normalize_classification(data: dict, symptoms: list[str]) -> RedFlagResult:
    """Shape a model answer: clamp the score, guarantee reasons on a red flag."""
    is_red_flag = data.get("isRedFlag", data.get("is_red_flag", False))
    if isinstance(is_red_flag, str):
        is_red_flag = is_red_flag.strip().lower() in ("true", "yes", "1")
    is_red_flag = bool(is_red_flag)

    raw_score = data.get("riskScore", data.get("risk_score", 0))
    try:
        score = _clamp(float(raw_score))
    except (TypeError, ValueError):
        score = 0.0

    reasons = data.get("reasons") or []
    if isinstance(reasons, str):
        reasons = [reasons]
    reasons = [str(r).strip() for r in reasons if str(r).strip()]
    if is_red_flag and not reasons:
        reasons = [f"Reported symptoms: {', '.join(symptoms)}"]

    action = str(data.get("recommendation") or data.get("recommended_action") or "").strip()
    return RedFlagResult(
        is_red_flag=is_red_flag,
        risk_score=score,
        reasons=reasons,
        recommended_action=action or UNABLE_TO_ASSESS,
        source="model",
    )


class RedFlagClassifier:
    def __init__(self, llm: LLMClient | None = None) -> None:
        self._llm = llm

    @property
    def llm(self) -> LLMClient:
        return self._llm or get_llm_client()

    async def classify(
        self, symptoms: list[str], is_pregnant: bool = False, pregnancy_week: int | None = None
    ) -> RedFlagResult:
        if is_pregnant:
            context = f"Patient is pregnant (week {pregnancy_week or 'unknown'})."
        else:
            context = "Patient is not currently pregnant."

        try:
            raw = await self.llm.complete_text(
                system=CLASSIFIER_PROMPT.format(context=context),
                user=f"Symptoms: {', '.join(symptoms)}",
                temperature=0.2,
                max_tokens=400,
            )
            result = normalize_classification(parse_json_object(raw), symptoms)
        except Timeout:
            raise
        except LLMUnavailable:
            logger.info("No language model configured; using keyword screen")
            return keyword_screen(symptoms, is_pregnant)
        except Exception as e:
            logger.warning("Red-flag classification unusable (%s); using keyword screen", e)
            return keyword_screen(symptoms, is_pregnant)

        logger.info("Red-flag classification: flag=%s score=%.0f", result.is_red_flag, result.risk_score)
        return result
