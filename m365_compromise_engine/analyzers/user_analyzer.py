"""
User Indicator Evaluator
Analyzes: MFA registration, auth-method changes, delegates, forwarding,
inbox rules, app consents, admin roles, account age, password resets,
Conditional Access protection tier.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ..config import ScoringConfig
from ..models import CaProtection, UserFacts
from ..scoring.rules import USER, RuleRegistry
from .base import BaseEvaluator, OutcomeRecorder

logger = logging.getLogger("m365_compromise_engine.analyzers.user")

# Resolution order for UR-10; the first tier whose check holds wins.
CA_TIER_CHECKS: list[tuple[str, Callable[[CaProtection], bool]]] = [
    ("full", lambda ca: ca.full_coverage),
    ("partial", lambda ca: ca.partial_coverage),
    ("block_only", lambda ca: ca.block_policy),
]


def resolve_ca_tier(ca: CaProtection) -> str:
    for tier, holds in CA_TIER_CHECKS:
        if holds(ca):
            return tier
    return "none"


class UserEvaluator(BaseEvaluator):
    name = "user_evaluator"
    scope = USER

    def __init__(self, registry: RuleRegistry, config: Optional[ScoringConfig] = None):
        super().__init__(registry)
        self.config = config or ScoringConfig()

    def _evaluate(self, facts: UserFacts, now: Optional[datetime], record: OutcomeRecorder):
        record.check("UR-01", facts.auth_method_count == 0)
        record.check("UR-02", facts.auth_method_changed_recently)
        record.check("UR-03", facts.delegate_count > 0, detail=f"{facts.delegate_count} delegates")

        fwd = facts.forwarding
        record.check("UR-04", fwd.enabled, detail=(
            f"{fwd.target} ({'external' if fwd.external else 'internal'})" if fwd.target else None
        ))
        record.check("UR-05", facts.suspicious_rule_count > 0,
                     detail=f"{facts.suspicious_rule_count} rules")
        record.check("UR-06", facts.third_party_consent_count > 0,
                     detail=f"{facts.third_party_consent_count} consents")
        record.check("UR-07", facts.admin_role_count > 0,
                     detail=", ".join(facts.admin_roles) or None)

        age = facts.account_age_days(now)
        if age is None:
            logger.info(f"[{self.name}] {facts.user_principal_name}: account creation date unknown")
            record.miss("UR-08", detail="creation date unavailable")
        else:
            record.check("UR-08", age < self.config.new_account_days, detail=f"{age:.1f} days old")

        record.check("UR-09", facts.password_reset_recently)
        record.hit_scaled("UR-10", resolve_ca_tier(facts.ca_protection))
