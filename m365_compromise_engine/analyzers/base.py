"""
Base evaluator class — Abstract interface for the indicator evaluators.
Defines the evaluator contract; outcomes are scoring.models.IndicatorOutcome.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..scoring.models import IndicatorOutcome
from ..scoring.rules import SIGNIN, IndicatorRule, RuleRegistry

logger = logging.getLogger("m365_compromise_engine.analyzers")


class OutcomeRecorder:
    """Outcomes collected during a single evaluate() call, keyed by rule id."""

    def __init__(self, registry: RuleRegistry):
        self.registry = registry
        self.outcomes: dict[str, IndicatorOutcome] = {}

    def hit(self, rule_id: str, detail: Optional[str] = None) -> IndicatorOutcome:
        """Record a fully applicable fixed-value indicator."""
        rule = self.registry[rule_id]
        return self._record(make_outcome(rule, applicable=True, points=rule.points, detail=detail))

    def hit_scaled(self, rule_id: str, band: str) -> IndicatorOutcome:
        """Record a variable-scale indicator resolved to one band."""
        rule = self.registry[rule_id]
        points = rule.scaled_points(band)
        return self._record(make_outcome(rule, applicable=points != 0, points=points, detail=band))

    def miss(self, rule_id: str, detail: Optional[str] = None) -> IndicatorOutcome:
        """Record a not-applicable indicator."""
        return self._record(make_outcome(self.registry[rule_id], applicable=False, detail=detail))

    def check(self, rule_id: str, condition: bool, detail: Optional[str] = None) -> IndicatorOutcome:
        return self.hit(rule_id, detail) if condition else self.miss(rule_id)

    def _record(self, outcome: IndicatorOutcome) -> IndicatorOutcome:
        self.outcomes[outcome.id] = outcome
        return outcome


def make_outcome(
    rule: IndicatorRule,
    applicable: bool,
    points: int = 0,
    detail: Optional[str] = None,
) -> IndicatorOutcome:
    return IndicatorOutcome(
        id=rule.id,
        label=rule.label,
        points=points if applicable else 0,
        applicable=applicable,
        category=rule.category,
        detail=detail,
    )


class BaseEvaluator(ABC):
    """
    Abstract base class for indicator evaluators.
    Evaluators receive facts and produce one outcome per rule in their scope,
    in registry order. Rules an evaluator does not reach are reported as
    not applicable rather than omitted.

    Evaluators hold configuration only. Each evaluate() call records into its
    own OutcomeRecorder, so one instance can serve several threads.
    """

    name: str = "base"
    scope: str = SIGNIN

    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def evaluate(self, subject: Any, context: Any = None) -> list[IndicatorOutcome]:
        """
        Execute evaluation and return the ordered outcome list.
        Subclasses implement _evaluate() with specific logic.
        """
        record = OutcomeRecorder(self.registry)
        fallback_detail = None

        try:
            self._evaluate(subject, context, record)
        except Exception as e:
            logger.exception(f"[{self.name}] Evaluation failed: {e}")
            fallback_detail = f"evaluation error: {type(e).__name__}"

        return [
            record.outcomes.get(rule.id) or make_outcome(rule, applicable=False, detail=fallback_detail)
            for rule in self.registry.for_scope(self.scope)
        ]

    @abstractmethod
    def _evaluate(self, subject: Any, context: Any, record: OutcomeRecorder):
        """Implement evaluation logic. Record outcomes via record.hit()/miss()/check()/hit_scaled()."""
        raise NotImplementedError
