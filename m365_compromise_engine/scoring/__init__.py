"""Scoring package — indicator registry, aggregation, breach probability, FP recomputation."""

from .rules import IndicatorRule, RuleRegistry
from .models import (
    AnalysisResult,
    BreachProbabilityAssessment,
    CategoryScore,
    IndicatorOutcome,
    ScoredSignIn,
    UserRiskProfile,
)
from .engine import classify, score_sign_in, score_user
from .breach import assess_breach_probability
from .recompute import FalsePositiveRecomputer

__all__ = [
    "IndicatorRule",
    "RuleRegistry",
    "AnalysisResult",
    "BreachProbabilityAssessment",
    "CategoryScore",
    "IndicatorOutcome",
    "ScoredSignIn",
    "UserRiskProfile",
    "classify",
    "score_sign_in",
    "score_user",
    "assess_breach_probability",
    "FalsePositiveRecomputer",
]
