"""
Sign-in Indicator Evaluator
Evaluates: legacy protocols, MFA / CA outcome, foreign and high-reputation IPs,
impossible travel, working hours, session anomalies, device trust, expected
location, Identity Protection risk, trusted-IP history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from ..config import ScoringConfig
from ..models import SignInFact
from ..scoring.rules import SIGNIN, RuleRegistry, resolve_reputation_band
from .base import BaseEvaluator, OutcomeRecorder
from .trusted_ip import TrustedIpProfile

logger = logging.getLogger("m365_compromise_engine.analyzers.signin")


@dataclass
class SignInContext:
    """Run-scoped inputs that are not part of the sign-in record itself."""
    reputation_score: Optional[int] = None
    trusted_ip_profile: Optional[TrustedIpProfile] = None


class SignInEvaluator(BaseEvaluator):
    name = "signin_evaluator"
    scope = SIGNIN

    def __init__(self, registry: RuleRegistry, config: Optional[ScoringConfig] = None):
        super().__init__(registry)
        self.config = config or ScoringConfig()
        self._legacy = {p.lower() for p in self.config.legacy_protocols}
        self._expected = {c.upper() for c in self.config.expected_countries}
        self._trusted_asns = {int(a) for a in self.config.trusted_asns}

        # First match wins; everything after the winner is suppressed.
        self.exclusive_auth_rules: list[tuple[str, Callable[[SignInFact], bool]]] = [
            ("SR-02", self.is_mfa_failure),
            ("SR-03", self.is_ca_failure),
            ("SR-04", self.is_single_factor),
        ]

    # ── Predicates ──────────────────────────────────────────────────────────

    def is_legacy(self, fact: SignInFact) -> bool:
        return (fact.client_app or "").lower() in self._legacy

    def is_mfa_failure(self, fact: SignInFact) -> bool:
        return fact.failure_code in self.config.mfa_failure_codes

    def is_ca_failure(self, fact: SignInFact) -> bool:
        return (
            (fact.conditional_access_status or "").lower() == "failure"
            or fact.failure_code in self.config.ca_failure_codes
        )

    def is_single_factor(self, fact: SignInFact) -> bool:
        return fact.succeeded and fact.auth_factors_completed < 2

    def is_outside_working_hours(self, fact: SignInFact) -> bool:
        local = fact.timestamp + timedelta(hours=self.config.working_hours_utc_offset)
        start, end = self.config.working_hours_start, self.config.working_hours_end
        if start <= end:
            inside = start <= local.hour < end
        else:
            inside = local.hour >= start or local.hour < end
        return not inside

    # ── Evaluation ──────────────────────────────────────────────────────────

    def _evaluate(self, fact: SignInFact, context: Optional[SignInContext], record: OutcomeRecorder):
        context = context or SignInContext()

        record.check("SR-01", self.is_legacy(fact), detail=fact.client_app)
        self._evaluate_exclusive_auth(record, fact)
        reputation = context.reputation_score
        if reputation is None:
            reputation = fact.reputation_score
        self._evaluate_foreign_ip(record, fact, reputation)
        self._evaluate_reputation_asn(record, fact, reputation)

        if fact.travel is not None:
            record.hit("SR-07", detail=(
                f"{fact.travel.origin.label()} -> {fact.travel.destination.label()} "
                f"at {fact.travel.speed_kmh:.0f} km/h"
            ))
        else:
            record.miss("SR-07")

        record.check("SR-08", self.is_outside_working_hours(fact),
                     detail=fact.timestamp.strftime("%H:%M UTC"))

        flags = fact.session_flags
        record.check("SR-09", flags.flagged, detail=fact.correlation_id or None)
        record.check("SR-10", flags.country_changed)
        record.check("SR-11", flags.ip_changed)
        record.check("SR-12", flags.device_changed)

        record.check("SR-13", fact.device.is_domain_joined, detail=fact.device.trust_type or None)
        record.check("SR-14", fact.device.is_compliant)
        self._evaluate_expected_location(record, fact)
        self._evaluate_risk_signal(record, fact)
        self._evaluate_trusted_ip(record, fact, context.trusted_ip_profile)

    def _evaluate_exclusive_auth(self, record: OutcomeRecorder, fact: SignInFact):
        winner = None
        for rule_id, predicate in self.exclusive_auth_rules:
            if winner is not None:
                record.miss(rule_id, detail=f"suppressed by {winner}")
            elif predicate(fact):
                winner = rule_id
                record.hit(rule_id, detail=fact.failure_reason or None)
            else:
                record.miss(rule_id)

    def _evaluate_foreign_ip(self, record: OutcomeRecorder, fact: SignInFact, reputation: Optional[int]):
        if not self._expected:
            record.miss("SR-05", detail="no expected countries configured")
            return
        if not fact.country:
            logger.info(f"[{self.name}] {fact.id}: no location, foreign-IP check not applicable")
            record.miss("SR-05", detail="location unavailable")
            return
        if fact.country.upper() in self._expected:
            record.miss("SR-05")
            return
        if reputation is None:
            logger.info(f"[{self.name}] {fact.id}: no reputation score for {fact.ip_address}")
            record.miss("SR-05", detail="reputation unavailable")
            return
        band, _ = resolve_reputation_band(reputation, self.config.reputation_bands)
        record.hit_scaled("SR-05", band)

    def _evaluate_reputation_asn(self, record: OutcomeRecorder, fact: SignInFact, reputation: Optional[int]):
        if reputation is None:
            record.miss("SR-06", detail="reputation unavailable")
            return
        if reputation < self.config.high_reputation_threshold:
            record.miss("SR-06")
            return
        if fact.asn is None:
            record.miss("SR-06", detail="ASN unavailable")
            return
        record.check("SR-06", fact.asn not in self._trusted_asns,
                     detail=f"AS{fact.asn} reputation {reputation}")

    def _evaluate_expected_location(self, record: OutcomeRecorder, fact: SignInFact):
        if not self._expected or not fact.country:
            record.miss("SR-15", detail=None if fact.country else "location unavailable")
            return
        record.check("SR-15", fact.country.upper() in self._expected, detail=fact.country)

    def _evaluate_risk_signal(self, record: OutcomeRecorder, fact: SignInFact):
        level = (fact.risk.level if fact.risk else "").lower()
        if level not in self.config.external_risk_scale:
            record.miss("SR-16", detail="risk signal unavailable" if fact.risk else None)
            return
        record.hit_scaled("SR-16", level)

    def _evaluate_trusted_ip(
        self, record: OutcomeRecorder, fact: SignInFact, profile: Optional[TrustedIpProfile]
    ):
        if profile is None or not fact.ip_address:
            for rule_id in ("SR-17", "SR-18", "SR-19"):
                record.miss(rule_id, detail="trusted-IP profile unavailable")
            return

        matched = profile.trusted_range_for(fact.ip_address)
        record.check("SR-17", matched is not None, detail=matched)
        history = profile.history(fact.ip_address)
        record.check("SR-18", profile.is_frequent_mfa(fact.ip_address),
                     detail=f"{history.mfa_success} MFA sign-ins")
        record.check("SR-19", profile.is_frequent_compliant(fact.ip_address),
                     detail=f"{history.compliant_device} compliant-device sign-ins")
