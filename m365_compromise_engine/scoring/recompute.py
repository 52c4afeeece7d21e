"""
False-Positive Recomputation Engine — Re-aggregates stored indicator
breakdowns with analyst-marked indicator ids excluded.

Only already-computed outcomes and sign-in timestamps are used; evaluators
never run again. An empty exclusion set reproduces the primary pass exactly.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..config import BreachConfig, ScoringConfig
from .breach import assess_breach_probability
from .engine import apply_exclusions, score_sign_in, score_user
from .models import AnalysisResult
from .rules import RuleRegistry

logger = logging.getLogger("m365_compromise_engine.scoring.recompute")


class FalsePositiveRecomputer:
    """Applies an exclusion set to an AnalysisResult."""

    def __init__(
        self,
        registry: RuleRegistry,
        scoring: Optional[ScoringConfig] = None,
        breach: Optional[BreachConfig] = None,
    ):
        self.registry = registry
        self.scoring = scoring or ScoringConfig()
        self.breach = breach or BreachConfig()

    def recompute(self, result: AnalysisResult, excluded_ids: Iterable[str] = ()) -> AnalysisResult:
        excluded = frozenset(excluded_ids)
        unknown = sorted(i for i in excluded if i not in self.registry)
        if unknown:
            logger.warning(f"Ignoring unknown indicator ids in exclusion set: {', '.join(unknown)}")
            excluded = excluded - set(unknown)

        sign_ins = [
            score_sign_in(
                sign_in_id=s.sign_in_id,
                timestamp=s.timestamp,
                outcomes=apply_exclusions(s.outcomes, excluded),
                config=self.scoring,
                session_flags=s.session_flags,
                fact=s.fact,
                sign_in=s.sign_in,
            )
            for s in result.sign_ins
        ]

        profile = None
        if result.user_profile is not None:
            profile = score_user(
                result.user_profile.user_principal_name,
                apply_exclusions(result.user_profile.outcomes, excluded),
                self.scoring,
            )

        breach = assess_breach_probability(sign_ins, profile, self.registry, self.breach)
        if excluded:
            logger.info(
                f"Recomputed {result.user_principal_name} excluding {len(excluded)} indicators: "
                f"breach {result.breach.percentage}% -> {breach.percentage}%"
            )

        return AnalysisResult(
            user_principal_name=result.user_principal_name,
            sign_ins=sign_ins,
            user_profile=profile,
            breach=breach,
            display_threshold=result.display_threshold,
            lookback_days=result.lookback_days,
            excluded_ids=sorted(excluded),
            generated_utc=datetime.now(timezone.utc).isoformat(),
            user_facts=result.user_facts,
        )
