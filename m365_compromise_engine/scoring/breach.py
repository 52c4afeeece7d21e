"""
Breach-Probability Model — Four capped category accumulators, a base
percentage, order-independent multipliers and a status tier.

Contributions are keyed by indicator id through the rule registry
(breach_category / breach_weight), counted once per applicable,
non-excluded occurrence, and capped per category only.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from ..config import BreachConfig
from .models import BreachProbabilityAssessment, CategoryScore, ScoredSignIn, UserRiskProfile
from .rules import (
    BREACH_CATEGORIES,
    CREDENTIAL,
    PRIVILEGED_ROLE_RULE,
    TEMPORAL,
    RuleRegistry,
)

logger = logging.getLogger("m365_compromise_engine.scoring.breach")

TEMPORAL_CONTRIBUTOR = "temporal_window"


def round_half_up(value: float) -> int:
    """Matches JavaScript Math.round for the non-negative values used here."""
    return int(math.floor(value + 0.5))


def find_dense_window(
    events: list[tuple[datetime, int]],
    window_minutes: int,
    min_events: int,
    min_score: int,
) -> Optional[tuple[datetime, datetime, int]]:
    """
    Find the first window of `window_minutes` holding at least `min_events`
    sign-ins with raw score >= `min_score`. Returns (start, end, count).
    """
    risky = sorted(ts for ts, score in events if ts is not None and score >= min_score)
    if min_events <= 0 or len(risky) < min_events:
        return None

    window = timedelta(minutes=window_minutes)
    start = 0
    for end, ts in enumerate(risky):
        while ts - risky[start] > window:
            start += 1
        count = end - start + 1
        if count >= min_events:
            return risky[start], ts, count
    return None


def assess_breach_probability(
    sign_ins: list[ScoredSignIn],
    user_profile: Optional[UserRiskProfile],
    registry: RuleRegistry,
    config: Optional[BreachConfig] = None,
) -> BreachProbabilityAssessment:
    config = config or BreachConfig()
    assessment = BreachProbabilityAssessment(
        categories={
            name: CategoryScore(name=name, max_score=int(config.caps.get(name, 0)))
            for name in BREACH_CATEGORIES
        },
        status=config.default_status,
    )

    outcomes = [o for s in sign_ins for o in s.outcomes]
    if user_profile is not None:
        outcomes.extend(user_profile.outcomes)

    for outcome in outcomes:
        if not outcome.contributes:
            continue
        rule = registry.rules.get(outcome.id)
        if rule is None or not rule.breach_category or rule.breach_weight <= 0:
            continue
        if rule.breach_bands and outcome.detail not in rule.breach_bands:
            continue
        category = assessment.categories[rule.breach_category]
        category.raw_score += rule.breach_weight
        category.contributors[outcome.id] = category.contributors.get(outcome.id, 0) + 1

    dense = find_dense_window(
        [(s.timestamp, s.raw_score) for s in sign_ins],
        window_minutes=config.temporal_window_minutes,
        min_events=config.temporal_min_events,
        min_score=config.temporal_min_score,
    )
    if dense is not None:
        start, end, count = dense
        temporal = assessment.categories[TEMPORAL]
        temporal.raw_score += config.temporal_weight
        temporal.contributors[TEMPORAL_CONTRIBUTOR] = count
        logger.info(f"Dense activity: {count} risky sign-ins between {start.isoformat()} and {end.isoformat()}")

    # Multipliers are evaluated after every category is capped.
    credential_present = assessment.categories[CREDENTIAL].raw_score > 0
    privileged = user_profile is not None and any(
        o.id == PRIVILEGED_ROLE_RULE and o.contributes for o in user_profile.outcomes
    )
    broad = assessment.affected_categories >= config.breadth_min_categories

    combined = 1.0
    for name, active, factor in (
        ("credential_compromise", credential_present, config.credential_multiplier),
        ("privileged_account", privileged, config.privileged_multiplier),
        ("multi_category", broad, config.breadth_multiplier),
    ):
        if active:
            combined *= factor
            assessment.multipliers.append({"name": name, "factor": factor})

    assessment.combined_multiplier = round(combined, 4)
    assessment.percentage = min(100, round_half_up(assessment.base_percentage * combined))

    for threshold, status in sorted(config.status_tiers, key=lambda t: t[0], reverse=True):
        if assessment.percentage >= threshold:
            assessment.status = status
            break

    return assessment
