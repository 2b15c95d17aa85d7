"""Provider employee to local identity resolution.

Each provider employee is scored against every active local identity:

- name similarity (normalized edit distance) weighted 0.6
- exact, case-insensitive email match worth 0.4

Candidates at or above ``min_match_score`` are ranked. The best one is
auto-mapped when it reaches ``auto_map_threshold`` and nothing else claims
either side of the pair; otherwise the employee is queued for review.
Pairs an operator rejected are never proposed again, and employees the
provider reports as inactive are not matched at all.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID

from attendance_api.config import Settings
from attendance_api.exceptions import MalformedRecordError
from attendance_api.models.domain.identity import (
    IdentityMapping,
    LocalIdentity,
    MappingStatus,
)
from attendance_api.models.domain.provider import ProviderEmployee
from attendance_api.repositories.gateway import PersistenceGateway
from attendance_api.utils.secure_logging import log_warning, sanitize_exception_message

logger = logging.getLogger(__name__)

NAME_WEIGHT = 0.6
EMAIL_WEIGHT = 0.4
MAX_REVIEW_CANDIDATES = 5

# Pairs in these states are operator decisions and are never rewritten here
_OPERATOR_STATUSES = frozenset({MappingStatus.CONFIRMED, MappingStatus.REJECTED})


class MatchOutcome(StrEnum):
    """Classification of one provider employee."""

    AUTO_MAPPED = "auto_mapped"
    NEEDS_REVIEW = "needs_review"
    UNMATCHED = "unmatched"
    ALREADY_MAPPED = "already_mapped"
    INACTIVE = "inactive"  # Deactivated at the provider


@dataclass(frozen=True)
class ResolverConfig:
    """Matching thresholds."""

    min_match_score: float = 0.3
    auto_map_threshold: float = 0.8
    max_candidates: int = MAX_REVIEW_CANDIDATES

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverConfig":
        return cls(
            min_match_score=settings.min_match_score,
            auto_map_threshold=settings.auto_map_threshold,
        )


@dataclass(frozen=True)
class MatchCandidate:
    """A local identity scored against a provider employee."""

    local_identity_id: UUID
    name: str
    email: str
    score: float


@dataclass
class MatchResult:
    """Resolution of a single provider employee."""

    employee: ProviderEmployee
    outcome: MatchOutcome
    candidates: list[MatchCandidate] = field(default_factory=list)
    existing: IdentityMapping | None = None

    @property
    def best(self) -> MatchCandidate | None:
        return self.candidates[0] if self.candidates else None

    def proposed_mapping(self) -> IdentityMapping | None:
        """Mapping row this result asks to store, if any."""
        best = self.best
        if best is None or self.outcome not in (MatchOutcome.AUTO_MAPPED, MatchOutcome.NEEDS_REVIEW):
            return None
        return IdentityMapping(
            provider_code=self.employee.code,
            local_identity_id=best.local_identity_id,
            match_score=best.score,
            status=(
                MappingStatus.AUTO_MAPPED
                if self.outcome == MatchOutcome.AUTO_MAPPED
                else MappingStatus.NEEDS_REVIEW
            ),
            provider_name=self.employee.name or None,
            provider_email=self.employee.email,
        )


@dataclass
class ResolutionReport:
    """Results of resolving a whole roster."""

    results: list[MatchResult] = field(default_factory=list)
    malformed: list[MalformedRecordError] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        counts = {outcome.value: 0 for outcome in MatchOutcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        counts["malformed"] = len(self.malformed)
        return counts


def _normalize_name(value: str | None) -> str:
    return " ".join((value or "").lower().split())


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def name_similarity(a: str | None, b: str | None) -> float:
    """Symmetric normalized similarity in [0, 1].

    Names are lower-cased and whitespace-collapsed first. Two empty names
    are not evidence of anything and score 0.
    """
    left, right = _normalize_name(a), _normalize_name(b)
    longest = max(len(left), len(right))
    if not left or not right:
        return 0.0
    return 1.0 - levenshtein_distance(left, right) / longest


def compute_match_score(employee: ProviderEmployee, identity: LocalIdentity) -> float:
    """Composite match score in [0, 1]."""
    score = name_similarity(employee.name, identity.name) * NAME_WEIGHT
    if employee.email and identity.email:
        if employee.email.strip().lower() == identity.email.strip().lower():
            score += EMAIL_WEIGHT
    return min(max(score, 0.0), 1.0)


def rank_candidates(
    employee: ProviderEmployee,
    identities: list[LocalIdentity],
    config: ResolverConfig,
) -> list[MatchCandidate]:
    """Score every identity and keep qualifying ones, best first.

    Ties keep the order of ``identities``.
    """
    scored = []
    for identity in identities:
        score = compute_match_score(employee, identity)
        if score >= config.min_match_score:
            scored.append(
                MatchCandidate(
                    local_identity_id=identity.id,
                    name=identity.name,
                    email=identity.email,
                    score=score,
                )
            )
    scored.sort(key=lambda c: c.score, reverse=True)
    return scored


def resolve(
    provider_employees: list[ProviderEmployee],
    local_identities: list[LocalIdentity],
    config: ResolverConfig,
    existing_mappings: list[IdentityMapping],
) -> ResolutionReport:
    """Classify every provider employee.

    Args:
        provider_employees: Current roster
        local_identities: Active local identities, in insertion order
        config: Matching thresholds
        existing_mappings: All stored mappings

    Returns:
        ResolutionReport with one result per distinct provider code
    """
    active_by_code: dict[str, IdentityMapping] = {}
    claimed_identities: set[UUID] = set()
    for mapping in existing_mappings:
        if mapping.is_active:
            active_by_code[mapping.provider_code] = mapping
            claimed_identities.add(mapping.local_identity_id)
    rejected_pairs = {
        (m.provider_code, m.local_identity_id) for m in existing_mappings if m.status == MappingStatus.REJECTED
    }

    report = ResolutionReport()
    seen_codes: set[str] = set()

    for employee in provider_employees:
        code = employee.code.strip()
        if not code:
            report.malformed.append(MalformedRecordError("Roster row has no employee code", employee.raw))
            continue
        if code in seen_codes:
            report.malformed.append(MalformedRecordError(f"Duplicate employee code {code}", employee.raw))
            continue
        seen_codes.add(code)

        existing = active_by_code.get(code)
        if not employee.active:
            report.results.append(MatchResult(employee=employee, outcome=MatchOutcome.INACTIVE, existing=existing))
            continue

        candidates = [
            candidate
            for candidate in rank_candidates(employee, local_identities, config)
            if (code, candidate.local_identity_id) not in rejected_pairs
        ]

        if existing is not None:
            best = candidates[0] if candidates else None
            if best is None or best.local_identity_id == existing.local_identity_id:
                outcome = MatchOutcome.ALREADY_MAPPED
            else:
                outcome = MatchOutcome.NEEDS_REVIEW
        elif not candidates:
            outcome = MatchOutcome.UNMATCHED
        elif (
            candidates[0].score >= config.auto_map_threshold
            and candidates[0].local_identity_id not in claimed_identities
        ):
            outcome = MatchOutcome.AUTO_MAPPED
            claimed_identities.add(candidates[0].local_identity_id)
        else:
            outcome = MatchOutcome.NEEDS_REVIEW

        report.results.append(
            MatchResult(
                employee=employee,
                outcome=outcome,
                candidates=candidates[: config.max_candidates],
                existing=existing,
            )
        )

    return report


@dataclass
class WriteBackResult:
    """Outcome of storing a resolution report."""

    processed: int = 0
    written: int = 0
    errors: list[str] = field(default_factory=list)


class IdentityResolutionService:
    """Stores resolver decisions through the persistence gateway."""

    def __init__(self, gateway: PersistenceGateway, write_lock: asyncio.Lock | None = None) -> None:
        self.gateway = gateway
        self.write_lock = write_lock or asyncio.Lock()

    async def write_back(
        self,
        report: ResolutionReport,
        existing_mappings: list[IdentityMapping],
    ) -> WriteBackResult:
        """Upsert mappings for auto-mapped and needs-review results.

        A pair already confirmed or rejected by an operator is left alone.
        """
        by_pair = {(m.provider_code, m.local_identity_id): m for m in existing_mappings}
        outcome = WriteBackResult()

        async with self.write_lock:
            for result in report.results:
                proposed = result.proposed_mapping()
                if proposed is None:
                    outcome.processed += 1
                    continue

                stored = by_pair.get((proposed.provider_code, proposed.local_identity_id))
                if stored is not None and stored.status in _OPERATOR_STATUSES:
                    outcome.processed += 1
                    continue

                try:
                    await self.gateway.upsert_mapping(proposed)
                except Exception as e:
                    outcome.errors.append(
                        f"Failed to store mapping for {proposed.provider_code}: "
                        f"{sanitize_exception_message(e)}"
                    )
                    log_warning(logger, f"Failed to store mapping for {proposed.provider_code}", e)
                    continue

                outcome.processed += 1
                outcome.written += 1

        logger.info(f"Identity write-back: {outcome.written} mappings stored, {len(outcome.errors)} failed")
        return outcome
