"""
Investigation pipeline — Runs the indicator engine over one account.

Flow:
  facts -> session correlation -> impossible travel -> trusted-IP profile
        -> reputation resolution -> sign-in / user evaluation
        -> aggregation & classification -> breach probability

Run-scoped caches live on RunContext and are passed in explicitly. Geo and
reputation caches are shared across accounts; the trusted-IP profile is
rebuilt on every analyze() call because it describes one account.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from .analyzers.session import SessionCorrelator
from .analyzers.signin_analyzer import SignInContext, SignInEvaluator
from .analyzers.travel import ImpossibleTravelDetector
from .analyzers.trusted_ip import TrustedIpProfiler
from .analyzers.user_analyzer import UserEvaluator
from .config import EngineConfig
from .enrichment.geo import GeoCache, IpGeoLocator
from .enrichment.reputation import ReputationCache, ReputationClient
from .models import AccountData, SignInFact
from .scoring.breach import assess_breach_probability
from .scoring.engine import score_sign_in, score_user
from .scoring.models import AnalysisResult
from .scoring.recompute import FalsePositiveRecomputer
from .scoring.rules import RuleRegistry

logger = logging.getLogger("m365_compromise_engine.pipeline")


class NoDataError(Exception):
    """Raised when there is nothing to analyze for an account."""
    def __init__(self, user_principal_name: str, reason: str):
        self.user_principal_name = user_principal_name
        self.reason = reason
        super().__init__(f"No result for {user_principal_name}: {reason}")


class RunContext:
    """Shared, mutable, run-scoped resources."""

    def __init__(
        self,
        geo_cache: Optional[GeoCache] = None,
        reputation_cache: Optional[ReputationCache] = None,
        trusted_ip_profiler: Optional[TrustedIpProfiler] = None,
    ):
        self.geo_cache = geo_cache or GeoCache()
        self.reputation_cache = reputation_cache or ReputationCache()
        self.trusted_ip_profiler = trusted_ip_profiler or TrustedIpProfiler()

    @classmethod
    def from_config(cls, config: EngineConfig) -> "RunContext":
        lookups = config.lookups
        locator = IpGeoLocator(timeout=lookups.geo_timeout_seconds) if lookups.geo_enabled else None
        return cls(
            geo_cache=GeoCache(locator),
            reputation_cache=ReputationCache(ReputationClient.from_config(lookups)),
            trusted_ip_profiler=TrustedIpProfiler(
                min_mfa=config.scoring.trusted_ip_min_mfa,
                min_compliant=config.scoring.trusted_ip_min_compliant,
            ),
        )

    def close(self):
        if self.geo_cache.locator is not None:
            self.geo_cache.locator.close()
        if self.reputation_cache.client is not None:
            self.reputation_cache.client.close()


class InvestigationEngine:
    """Scores accounts and recomputes results with false positives excluded."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        context: Optional[RunContext] = None,
        registry: Optional[RuleRegistry] = None,
    ):
        self.config = config or EngineConfig()
        self.context = context or RunContext(
            trusted_ip_profiler=TrustedIpProfiler(
                min_mfa=self.config.scoring.trusted_ip_min_mfa,
                min_compliant=self.config.scoring.trusted_ip_min_compliant,
            ),
        )
        self.registry = registry or RuleRegistry.from_config(self.config.scoring, self.config.breach)
        self.correlator = SessionCorrelator()
        self.travel = ImpossibleTravelDetector(
            self.context.geo_cache,
            speed_limit_kmh=self.config.scoring.impossible_travel_speed_kmh,
        )
        self.signin_evaluator = SignInEvaluator(self.registry, self.config.scoring)
        self.user_evaluator = UserEvaluator(self.registry, self.config.scoring)
        self.recomputer = FalsePositiveRecomputer(self.registry, self.config.scoring, self.config.breach)

    def analyze(self, data: AccountData, now: Optional[datetime] = None) -> AnalysisResult:
        upn = data.user_principal_name
        if data.user_facts is None:
            raise NoDataError(upn, "account not found")

        sign_ins = []
        for s in data.sign_ins:
            if s.timestamp is None:
                logger.warning(f"Sign-in {s.id} has no usable timestamp, skipped")
                continue
            sign_ins.append(s)
        if not sign_ins:
            raise NoDataError(upn, "no sign-ins in the lookback window")

        sign_ins.sort(key=lambda s: s.timestamp)
        logger.info(f"Analyzing {upn}: {len(sign_ins)} sign-ins")

        self.correlator.correlate(sign_ins)
        self.travel.detect(sign_ins)
        profiler = self.context.trusted_ip_profiler
        profiler.reset()
        profile = profiler.build(sign_ins, data.named_locations)
        reputations = self._resolve_reputations(sign_ins)

        scoring = self.config.scoring
        scored = []
        for s in sign_ins:
            outcomes = self.signin_evaluator.evaluate(
                s,
                SignInContext(
                    reputation_score=reputations.get(s.ip_address),
                    trusted_ip_profile=profile,
                ),
            )
            scored.append(score_sign_in(
                sign_in_id=s.id,
                timestamp=s.timestamp,
                outcomes=outcomes,
                config=scoring,
                session_flags=s.session_flags,
                fact=s,
            ))

        user_profile = score_user(upn, self.user_evaluator.evaluate(data.user_facts, now), scoring)
        breach = assess_breach_probability(scored, user_profile, self.registry, self.config.breach)

        result = AnalysisResult(
            user_principal_name=upn,
            sign_ins=scored,
            user_profile=user_profile,
            breach=breach,
            display_threshold=scoring.display_threshold,
            lookback_days=self.config.collection.lookback_days,
            generated_utc=datetime.now(timezone.utc).isoformat(),
            user_facts=data.user_facts.to_dict(),
        )
        logger.info(
            f"{upn}: user score {user_profile.score} ({user_profile.risk_level}), "
            f"{len(result.surfaced_sign_ins)} risky sign-ins, "
            f"breach probability {breach.percentage}% ({breach.status})"
        )
        return result

    def recompute(self, result: AnalysisResult, excluded_ids: Iterable[str] = ()) -> AnalysisResult:
        return self.recomputer.recompute(result, excluded_ids)

    def analyze_many(
        self,
        accounts: Iterable[AccountData],
        now: Optional[datetime] = None,
    ) -> dict[str, Union[AnalysisResult, NoDataError]]:
        """Analyze several accounts; a missing account is reported, not raised."""
        results: dict[str, Union[AnalysisResult, NoDataError]] = {}
        for data in accounts:
            try:
                results[data.user_principal_name] = self.analyze(data, now)
            except NoDataError as e:
                logger.info(str(e))
                results[data.user_principal_name] = e
        return results

    def _resolve_reputations(self, sign_ins: list[SignInFact]) -> dict[str, Optional[int]]:
        cache = self.context.reputation_cache
        scores: dict[str, Optional[int]] = {}
        for s in sign_ins:
            if not s.ip_address or s.ip_address in scores:
                continue
            cache.prime(s.ip_address, s.reputation_score)
            scores[s.ip_address] = cache.lookup(s.ip_address)
        return scores
