"""
Score Aggregator & Risk Classifier.

Scoring model:
  - A total is the sum of applicable, non-excluded indicator points.
  - The raw sum may be negative; displayed/classified totals clamp at 0.
  - Classification walks an ordered threshold table, highest first.

These functions are shared by the primary pass and FP recomputation.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from ..config import ScoringConfig
from ..models import SessionFlags, SignInFact
from .models import IndicatorOutcome, ScoredSignIn, UserRiskProfile


def classify(score: int, thresholds: list[tuple[int, str]], default: str) -> str:
    """First threshold the score reaches wins; tables are highest-first."""
    for threshold, level in sorted(thresholds, key=lambda t: t[0], reverse=True):
        if score >= threshold:
            return level
    return default


def classify_sign_in(score: int, config: ScoringConfig) -> str:
    return classify(score, config.signin_thresholds, config.signin_default_level)


def classify_user(score: int, config: ScoringConfig) -> str:
    return classify(score, config.user_thresholds, config.user_default_level)


def apply_exclusions(
    outcomes: Iterable[IndicatorOutcome],
    excluded_ids: frozenset[str] = frozenset(),
) -> list[IndicatorOutcome]:
    """
    Copy outcomes with the excluded flag set from scratch for this id set.
    Earlier exclusions on the input are discarded, so repeated calls with
    the same set give the same result.
    """
    return [replace(o, excluded=o.id in excluded_ids) for o in outcomes]


def score_sign_in(
    sign_in_id: str,
    timestamp: datetime,
    outcomes: list[IndicatorOutcome],
    config: ScoringConfig,
    session_flags: Optional[SessionFlags] = None,
    fact: Optional[SignInFact] = None,
    sign_in: Optional[dict] = None,
) -> ScoredSignIn:
    scored = ScoredSignIn(
        sign_in_id=sign_in_id,
        timestamp=timestamp,
        outcomes=outcomes,
        session_flags=session_flags or SessionFlags(),
        fact=fact,
        sign_in=sign_in,
    )
    scored.risk_level = classify_sign_in(scored.score, config)
    return scored


def score_user(
    user_principal_name: str,
    outcomes: list[IndicatorOutcome],
    config: ScoringConfig,
) -> UserRiskProfile:
    profile = UserRiskProfile(user_principal_name=user_principal_name, outcomes=outcomes)
    profile.risk_level = classify_user(profile.score, config)
    return profile
