"""Matching of new food analyses against a user's stored custom foods."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from food_sync.domain.foods import FoodRecord, MacroProfile, MatchCandidate

MIN_MATCH_RATIO = 0.5
MAX_MATCHES = 3

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NutrientTolerance:
    """Allowed deviation for one macro: the larger of a percentage or a floor."""

    field: str
    percentage: float
    absolute: float

    def allows(self, candidate: MacroProfile, reference: MacroProfile) -> bool:
        """Check the candidate value against the stored reference value."""
        new_value = float(getattr(candidate, self.field))
        stored_value = float(getattr(reference, self.field))
        band = max(stored_value * self.percentage, self.absolute)
        return abs(new_value - stored_value) <= band


NUTRIENT_TOLERANCES: tuple[NutrientTolerance, ...] = (
    NutrientTolerance("calories", 0.20, 25.0),
    NutrientTolerance("protein_g", 0.25, 3.0),
    NutrientTolerance("carbs_g", 0.25, 5.0),
    NutrientTolerance("fat_g", 0.25, 3.0),
)


class FoodMatchRepository(Protocol):
    """Read access needed to find reusable foods."""

    def list_records_with_keywords(
        self, owner_id: UUID, *, require_fitbit_food: bool
    ) -> list[FoodRecord]:
        """Return the owner's foods that have keywords."""

    def get_last_logged_times(
        self, owner_id: UUID, record_ids: list[int]
    ) -> dict[int, datetime]:
        """Return the most recent log time per food record id."""


def compute_match_ratio(
    new_keywords: Sequence[str], existing_keywords: Sequence[str]
) -> float:
    """Return the share of new keywords already present in a stored food."""
    if not new_keywords:
        return 0.0
    existing = set(existing_keywords)
    matches = sum(1 for keyword in new_keywords if keyword in existing)
    return matches / len(new_keywords)


def check_nutrient_tolerance(candidate: MacroProfile, reference: MacroProfile) -> bool:
    """Return True when every macro is within its tolerance band."""
    return all(
        tolerance.allows(candidate, reference) for tolerance in NUTRIENT_TOLERANCES
    )


def rank_candidates(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    """Order by match ratio, then by most recent use."""
    return sorted(
        candidates,
        key=lambda candidate: (candidate.match_ratio, candidate.last_logged_at),
        reverse=True,
    )


@dataclass
class FoodMatchService:
    """Finds stored foods similar enough to reuse instead of creating new ones."""

    repository: FoodMatchRepository
    dry_run: bool = False

    def find_matching_foods(
        self, owner_id: UUID, keywords: Sequence[str], macros: MacroProfile
    ) -> list[MatchCandidate]:
        """Return up to three reusable foods, best match first."""
        if not keywords:
            return []
        records = [
            record
            for record in self.repository.list_records_with_keywords(
                owner_id, require_fitbit_food=not self.dry_run
            )
            if record.keywords and (self.dry_run or record.fitbit_food_id is not None)
        ]
        scored: list[tuple[FoodRecord, float]] = []
        for record in records:
            ratio = compute_match_ratio(keywords, record.keywords)
            if ratio < MIN_MATCH_RATIO:
                continue
            if not check_nutrient_tolerance(macros, record.nutrients.macros()):
                continue
            scored.append((record, ratio))
        if not scored:
            return []

        last_logged = self.repository.get_last_logged_times(
            owner_id, [record.id for record, _ in scored]
        )
        candidates = [
            MatchCandidate(
                record=record,
                match_ratio=ratio,
                last_logged_at=last_logged.get(record.id, record.created_at),
            )
            for record, ratio in scored
        ]
        matches = rank_candidates(candidates)[:MAX_MATCHES]
        _logger.info(
            "Food matches: owner_id=%s candidates=%s returned=%s",
            owner_id,
            len(records),
            len(matches),
        )
        return matches
