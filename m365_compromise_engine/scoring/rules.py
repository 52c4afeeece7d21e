"""
Indicator Rule Registry — The single source of truth for every indicator id,
its point value, category and breach-probability mapping.

Evaluators, the aggregator, the breach model, the FP recomputation engine and
the browser payload exporter all read point values from here by id.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from ..config import BreachConfig, ScoringConfig

RISK = "risk"
SAFETY = "safety"

SIGNIN = "signin"
USER = "user"

CREDENTIAL = "credential_compromise"
SESSION = "session_anomalies"
CONFIGURATION = "configuration_weakness"
TEMPORAL = "temporal_concentration"

BREACH_CATEGORIES = (CREDENTIAL, SESSION, CONFIGURATION, TEMPORAL)


@dataclass(frozen=True)
class IndicatorRule:
    """
    Declarative definition of one indicator.

    Fixed rules award `points` when applicable. Variable-scale rules carry a
    `scale` of band -> points; the evaluator picks one band and the outcome
    carries that band's value.
    """
    id: str
    label: str
    points: int
    category: str = RISK
    scope: str = SIGNIN
    scale: tuple[tuple[str, int], ...] = ()
    breach_category: Optional[str] = None
    breach_weight: int = 0
    breach_bands: tuple[str, ...] = ()   # Scale bands that feed the breach model (all if empty)

    @property
    def is_variable(self) -> bool:
        return bool(self.scale)

    def scaled_points(self, band: str) -> int:
        for key, value in self.scale:
            if key == band:
                return value
        raise KeyError(f"{self.id} has no band '{band}'")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "points": self.points,
            "category": self.category,
            "scope": self.scope,
            "scale": dict(self.scale) if self.scale else None,
            "breach_category": self.breach_category,
            "breach_weight": self.breach_weight,
            "breach_bands": list(self.breach_bands),
        }


# ---------------------------------------------------------------------------
# Default rule table. Variable-scale rules get their scale from ScoringConfig.
# ---------------------------------------------------------------------------
DEFAULT_RULES = [
    # Sign-in indicators
    IndicatorRule("SR-01", "Legacy authentication protocol", 3,
                  breach_category=SESSION, breach_weight=5),
    IndicatorRule("SR-02", "MFA failure", 3,
                  breach_category=CREDENTIAL, breach_weight=10),
    IndicatorRule("SR-03", "Conditional Access policy failure", 2),
    IndicatorRule("SR-04", "Signed in without MFA", 2,
                  breach_category=CREDENTIAL, breach_weight=3),
    IndicatorRule("SR-05", "Foreign IP address (reputation scaled)", 0,
                  breach_category=SESSION, breach_weight=5),
    IndicatorRule("SR-06", "High-reputation-risk IP from untrusted ASN", 2,
                  breach_category=CREDENTIAL, breach_weight=8),
    IndicatorRule("SR-07", "Impossible travel", 4,
                  breach_category=SESSION, breach_weight=15),
    IndicatorRule("SR-08", "Sign-in outside working hours", 1),
    IndicatorRule("SR-09", "Session anomaly", 1,
                  breach_category=SESSION, breach_weight=5),
    IndicatorRule("SR-10", "Country switch within session", 3,
                  breach_category=SESSION, breach_weight=10),
    IndicatorRule("SR-11", "Multiple IPs within session", 1,
                  breach_category=SESSION, breach_weight=5),
    IndicatorRule("SR-12", "Device change within session", 2,
                  breach_category=SESSION, breach_weight=5),
    IndicatorRule("SR-13", "Trusted (domain-joined) device", -2, category=SAFETY),
    IndicatorRule("SR-14", "Compliant device", -2, category=SAFETY),
    IndicatorRule("SR-15", "Expected location", -1, category=SAFETY),
    IndicatorRule("SR-16", "Identity Protection risk signal", 0,
                  breach_category=CREDENTIAL, breach_weight=10),
    IndicatorRule("SR-17", "IP inside trusted named location", -3, category=SAFETY),
    IndicatorRule("SR-18", "IP with frequent MFA success history", -1, category=SAFETY),
    IndicatorRule("SR-19", "IP with frequent compliant-device history", -2, category=SAFETY),
    # Account indicators
    IndicatorRule("UR-01", "No MFA method registered", 4, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=8),
    IndicatorRule("UR-02", "Authentication methods changed recently", 2, scope=USER,
                  breach_category=CREDENTIAL, breach_weight=8),
    IndicatorRule("UR-03", "Mailbox delegates present", 2, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=4),
    IndicatorRule("UR-04", "Mail forwarding active", 4, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=8),
    IndicatorRule("UR-05", "Suspicious inbox rules", 3, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=6),
    IndicatorRule("UR-06", "Third-party application consents", 2, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=4),
    IndicatorRule("UR-07", "Administrative role assigned", 2, scope=USER),
    IndicatorRule("UR-08", "Newly created account", 1, scope=USER),
    IndicatorRule("UR-09", "Password reset recently", 1, scope=USER,
                  breach_category=CREDENTIAL, breach_weight=5),
    IndicatorRule("UR-10", "Conditional Access protection gap", 0, scope=USER,
                  breach_category=CONFIGURATION, breach_weight=6, breach_bands=("none",)),
]

PRIVILEGED_ROLE_RULE = "UR-07"


def reputation_band_labels(bands: list[tuple[int, int]]) -> list[tuple[str, int, int]]:
    """Turn (minimum, points) bands into (label, minimum, points), highest first."""
    ordered = sorted(bands, key=lambda b: b[0], reverse=True)
    labelled = []
    upper = None
    for minimum, points in ordered:
        label = f"{minimum}+" if upper is None else f"{minimum}-{upper - 1}"
        labelled.append((label, minimum, points))
        upper = minimum
    return labelled


def resolve_reputation_band(score: int, bands: list[tuple[int, int]]) -> tuple[str, int]:
    """Map a 0-100 reputation score onto its monotonic band."""
    for label, minimum, points in reputation_band_labels(bands):
        if score >= minimum:
            return label, points
    label, _, points = reputation_band_labels(bands)[-1]
    return label, points


@dataclass
class RuleRegistry:
    """Indicator rules keyed by id, resolved once per run from configuration."""
    rules: dict[str, IndicatorRule] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls,
        scoring: Optional[ScoringConfig] = None,
        breach: Optional[BreachConfig] = None,
    ) -> "RuleRegistry":
        scoring = scoring or ScoringConfig()
        breach = breach or BreachConfig()
        scales = {
            "SR-05": tuple((label, pts) for label, _, pts in reputation_band_labels(scoring.reputation_bands)),
            "SR-16": tuple(scoring.external_risk_scale.items()),
            "UR-10": tuple(scoring.ca_protection_scale.items()),
        }

        resolved = []
        for rule in DEFAULT_RULES:
            updates = {}
            if rule.id in scoring.points:
                updates["points"] = int(scoring.points[rule.id])
            if rule.id in breach.weights:
                updates["breach_weight"] = int(breach.weights[rule.id])
            if rule.id in scales:
                updates["scale"] = scales[rule.id]
                updates["points"] = max(v for _, v in scales[rule.id])
            resolved.append(replace(rule, **updates) if updates else rule)
        return cls.build(resolved)

    @classmethod
    def build(cls, rules: list[IndicatorRule]) -> "RuleRegistry":
        registry = cls()
        for rule in rules:
            if rule.id in registry.rules:
                raise ValueError(f"Duplicate indicator id: {rule.id}")
            registry.rules[rule.id] = rule
        return registry

    def __getitem__(self, rule_id: str) -> IndicatorRule:
        return self.rules[rule_id]

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self.rules

    def for_scope(self, scope: str) -> list[IndicatorRule]:
        return [r for r in self.rules.values() if r.scope == scope]

    def to_dict(self) -> dict:
        return {rule_id: rule.to_dict() for rule_id, rule in self.rules.items()}
