"""Deterministic weighted risk score for a beneficiary.

Pure functions over a profile, recent health logs and recent visits.
Nothing here touches the store or caches a result.
"""

from datetime import datetime, timezone

from app.models.risk import HealthLog, RiskAssessment, RiskLevel, RiskProfile, VisitRecord

RISK_COLORS: dict[str, str] = {
    "critical": "#EF4444",
    "high": "#F97316",
    "medium": "#F59E0B",
    "low": "#10B981",
}

AI_SCORE_WEIGHT = 0.30


def risk_level(score: int) -> RiskLevel:
    if score >= 70:
        return "critical"
    if score >= 50:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def risk_color(level: RiskLevel) -> str:
    return RISK_COLORS[level]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _half_up(value: float) -> int:
    return int(value + 0.5)


def calculate_risk_score(
    profile: RiskProfile,
    recent_logs: list[HealthLog] | None = None,
    visits: list[VisitRecord] | None = None,
    now: datetime | None = None,
) -> RiskAssessment:
    """Score a beneficiary from profile flags, recent logs and visit recency.

    ``visits`` is expected most recent first; only the first record's
    ``completed_date`` is consulted. A missing list and a first visit with no
    completion date both count as "no visits recorded".
    """
    recent_logs = recent_logs or []
    visits = visits or []
    now = now or datetime.now(timezone.utc)

    score = 0
    reasons: list[str] = []

    if profile.is_high_risk:
        score += 30
        reasons.append("High risk pregnancy")

    anemia = (profile.anemia_status or "").lower()
    if anemia == "severe":
        score += 25
        reasons.append("Severe anemia")
    elif anemia == "moderate":
        score += 15
        reasons.append("Moderate anemia")

    if profile.previous_complications:
        score += 20
        reasons.append("Previous complications")

    hb = profile.last_hemoglobin_level
    if hb and hb < 8:
        score += 25
        reasons.append("Very low hemoglobin")
    elif hb and hb < 10:
        score += 15
        reasons.append("Low hemoglobin")

    red_flags = sum(1 for log in recent_logs if log.is_red_flag)
    if red_flags:
        score += red_flags * 15
        reasons.append(f"{red_flags} red flag(s) in recent logs")

    severe = sum(1 for log in recent_logs if (log.symptom_severity or "").lower() == "severe")
    if severe:
        score += severe * 10
        reasons.append(f"{severe} severe symptom(s) reported")

    last_visit = _parse_timestamp(visits[0].completed_date) if visits else None
    if last_visit is not None:
        days_since = (now - last_visit).days
        if days_since > 60:
            score += 40
            reasons.append("No visit in over 60 days")
        elif days_since > 30:
            score += 20
            reasons.append("No visit in over 30 days")
    else:
        score += 30
        reasons.append("No visits recorded")

    ai_scores = [log.ai_risk_score for log in recent_logs if log.ai_risk_score]
    if ai_scores:
        average = sum(ai_scores) / len(ai_scores)
        contribution = _half_up(average * AI_SCORE_WEIGHT)
        if contribution:
            score += contribution
            reasons.append(f"Average AI risk score {average:.0f}")

    score = max(0, min(100, score))
    level = risk_level(score)
    return RiskAssessment(score=score, level=level, color=risk_color(level), reasons=reasons)
