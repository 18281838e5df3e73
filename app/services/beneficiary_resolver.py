"""Map an extracted patient name onto the worker's caseload."""

import logging
import re
from difflib import SequenceMatcher
from typing import Protocol

from app import config
from app.models.beneficiary import Beneficiary, ResolutionResult
from app.services import repository

logger = logging.getLogger(__name__)

_MULTISPACE_RE = re.compile(r"\s+")


def normalize_name(value: str) -> str:
    return _MULTISPACE_RE.sub(" ", value.strip()).casefold()


class NameMatcher(Protocol):
    def match(self, name: str, caseload: list[Beneficiary]) -> list[Beneficiary]:
        """Return matching beneficiaries, best first."""
        ...


class SubstringMatcher:
    """Case-insensitive substring on the full name, store order kept."""

    def match(self, name: str, caseload: list[Beneficiary]) -> list[Beneficiary]:
        needle = normalize_name(name)
        if not needle:
            return []
        return [b for b in caseload if needle in normalize_name(b.full_name)]


class SimilarityMatcher:
    """Ranks by sequence/token similarity; keeps candidates above ``threshold``."""

    def __init__(self, threshold: float = 0.8) -> None:
        self.threshold = threshold

    @staticmethod
    def score(left: str, right: str) -> float:
        a, b = normalize_name(left), normalize_name(right)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        tokens_a, tokens_b = set(a.split()), set(b.split())
        token = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
        return max(SequenceMatcher(a=a, b=b).ratio(), token)

    def match(self, name: str, caseload: list[Beneficiary]) -> list[Beneficiary]:
        scored = [(self.score(name, b.full_name), i, b) for i, b in enumerate(caseload)]
        kept = [item for item in scored if item[0] >= self.threshold]
        kept.sort(key=lambda item: (-item[0], item[1]))
        return [b for _, _, b in kept]


class BeneficiaryResolver:
    def __init__(self, matcher: NameMatcher | None = None, page_size: int | None = None) -> None:
        self.matcher = matcher or SubstringMatcher()
        self.page_size = page_size or config.CASELOAD_PAGE_SIZE

    async def resolve(
        self, patient_name: str | None, asha_worker_id: str | None
    ) -> tuple[ResolutionResult, Beneficiary | None]:
        """Resolve a name to one caseload entry.

        Returns the tagged result plus the matched beneficiary when resolved.
        Reads only; never writes to the store.
        """
        if not patient_name or not patient_name.strip():
            return ResolutionResult.no_name(), None
        if not asha_worker_id:
            logger.info("No worker id supplied; cannot search a caseload")
            return ResolutionResult.not_found(), None

        caseload = await repository.list_caseload(asha_worker_id, limit=self.page_size)
        matches = self.matcher.match(patient_name, caseload)
        if len(matches) == 1:
            return ResolutionResult.resolved(matches[0].id), matches[0]
        if matches:
            logger.info("Name matched %d caseload entries for worker %s", len(matches), asha_worker_id)
            return ResolutionResult.ambiguous([b.id for b in matches]), None
        return ResolutionResult.not_found(), None


def needs_manual_review(resolution: ResolutionResult) -> bool:
    """A name was heard but could not be pinned to exactly one beneficiary."""
    return resolution.beneficiary_id is None and resolution.status.value != "no_name_extracted"
