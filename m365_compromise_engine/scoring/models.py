"""
Scoring data models — Defines structured types for the scoring engine output.

Totals are never stored: raw_score/score are always recomputed from the
outcome breakdown, which keeps the primary pass and FP recomputation aligned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..models import SessionFlags, SignInFact, parse_timestamp


@dataclass
class IndicatorOutcome:
    """
    Result of evaluating one indicator rule.
    Points are the registry value when applicable and 0 otherwise.
    """
    id: str                              # Rule id (e.g., "SR-07")
    label: str                           # Human-readable rule label
    points: int = 0                      # Signed; 0 when not applicable
    applicable: bool = False
    category: str = "risk"               # risk or safety
    detail: Optional[str] = None         # Resolved band, suppression or skip reason
    excluded: bool = False               # Marked false-positive by an analyst

    @property
    def effective_points(self) -> int:
        """Points that count towards a total."""
        return self.points if self.applicable and not self.excluded else 0

    @property
    def contributes(self) -> bool:
        return self.applicable and not self.excluded

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "points": self.points,
            "applicable": self.applicable,
            "category": self.category,
            "detail": self.detail,
            "excluded": self.excluded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorOutcome":
        return cls(
            id=data["id"],
            label=data.get("label", ""),
            points=int(data.get("points", 0)),
            applicable=bool(data.get("applicable", False)),
            category=data.get("category", "risk"),
            detail=data.get("detail"),
            excluded=bool(data.get("excluded", False)),
        )


def sum_points(outcomes: list[IndicatorOutcome]) -> int:
    return sum(o.effective_points for o in outcomes)


@dataclass
class ScoredSignIn:
    """A sign-in with its indicator breakdown and classification."""
    sign_in_id: str
    timestamp: datetime
    outcomes: list[IndicatorOutcome] = field(default_factory=list)
    risk_level: str = "None"
    session_flags: SessionFlags = field(default_factory=SessionFlags)
    fact: Optional[SignInFact] = None
    sign_in: Optional[dict] = None      # Serialized fact when loaded from JSON

    @property
    def raw_score(self) -> int:
        return sum_points(self.outcomes)

    @property
    def score(self) -> int:
        return max(0, self.raw_score)

    def applicable_ids(self) -> list[str]:
        return [o.id for o in self.outcomes if o.contributes]

    def to_dict(self) -> dict:
        if self.fact is not None:
            sign_in = self.fact.to_dict()
        else:
            sign_in = self.sign_in or {"id": self.sign_in_id, "timestamp": self.timestamp.isoformat()}
        return {
            "sign_in_id": self.sign_in_id,
            "timestamp": self.timestamp.isoformat(),
            "raw_score": self.raw_score,
            "score": self.score,
            "risk_level": self.risk_level,
            "session_flags": self.session_flags.to_dict(),
            "indicators": [o.to_dict() for o in self.outcomes],
            "indicator_count": len(self.applicable_ids()),
            "sign_in": sign_in,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScoredSignIn":
        flags = data.get("session_flags") or {}
        return cls(
            sign_in_id=data["sign_in_id"],
            timestamp=parse_timestamp(data["timestamp"]),
            outcomes=[IndicatorOutcome.from_dict(o) for o in data.get("indicators", [])],
            risk_level=data.get("risk_level", "None"),
            session_flags=SessionFlags(
                ip_changed=bool(flags.get("ip_changed")),
                country_changed=bool(flags.get("country_changed")),
                device_changed=bool(flags.get("device_changed")),
            ),
            sign_in=data.get("sign_in"),
        )


@dataclass
class UserRiskProfile:
    """Per-account indicator breakdown and classification."""
    user_principal_name: str
    outcomes: list[IndicatorOutcome] = field(default_factory=list)
    risk_level: str = "Low"

    @property
    def raw_score(self) -> int:
        return sum_points(self.outcomes)

    @property
    def score(self) -> int:
        return max(0, self.raw_score)

    def to_dict(self) -> dict:
        return {
            "user_principal_name": self.user_principal_name,
            "raw_score": self.raw_score,
            "score": self.score,
            "risk_level": self.risk_level,
            "indicators": [o.to_dict() for o in self.outcomes],
            "indicator_count": sum(1 for o in self.outcomes if o.contributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserRiskProfile":
        return cls(
            user_principal_name=data["user_principal_name"],
            outcomes=[IndicatorOutcome.from_dict(o) for o in data.get("indicators", [])],
            risk_level=data.get("risk_level", "Low"),
        )


@dataclass
class CategoryScore:
    """One breach-probability bucket."""
    name: str
    max_score: int
    raw_score: int = 0                   # Uncapped sum of contributions
    contributors: dict[str, int] = field(default_factory=dict)  # indicator id -> occurrences

    @property
    def score(self) -> int:
        return min(self.raw_score, self.max_score)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "score": self.score,
            "max": self.max_score,
            "raw_score": self.raw_score,
            "contributors": dict(self.contributors),
        }


@dataclass
class BreachProbabilityAssessment:
    """Weighted, capped, multiplied compromise-likelihood estimate."""
    categories: dict[str, CategoryScore] = field(default_factory=dict)
    multipliers: list[dict[str, Any]] = field(default_factory=list)
    combined_multiplier: float = 1.0
    percentage: int = 0
    status: str = "Unlikely"

    @property
    def base_percentage(self) -> int:
        return sum(c.score for c in self.categories.values())

    @property
    def affected_categories(self) -> int:
        return sum(1 for c in self.categories.values() if c.score > 0)

    def to_dict(self) -> dict:
        return {
            "categories": {k: v.to_dict() for k, v in self.categories.items()},
            "base_percentage": self.base_percentage,
            "multipliers": list(self.multipliers),
            "combined_multiplier": self.combined_multiplier,
            "percentage": self.percentage,
            "status": self.status,
        }


@dataclass
class AnalysisResult:
    """Complete scoring output for one account."""
    user_principal_name: str
    sign_ins: list[ScoredSignIn] = field(default_factory=list)
    user_profile: Optional[UserRiskProfile] = None
    breach: BreachProbabilityAssessment = field(default_factory=BreachProbabilityAssessment)
    display_threshold: int = 0
    lookback_days: int = 30
    excluded_ids: list[str] = field(default_factory=list)
    generated_utc: str = ""
    user_facts: Optional[dict] = None

    @property
    def surfaced_sign_ins(self) -> list[ScoredSignIn]:
        """Sign-ins shown to downstream consumers; a filter, not a rescoring."""
        return [s for s in self.sign_ins if s.raw_score > self.display_threshold]

    def to_dict(self) -> dict:
        surfaced = self.surfaced_sign_ins
        return {
            "user_principal_name": self.user_principal_name,
            "generated_utc": self.generated_utc,
            "lookback_days": self.lookback_days,
            "display_threshold": self.display_threshold,
            "excluded_indicators": list(self.excluded_ids),
            "summary": {
                "total_sign_ins": len(self.sign_ins),
                "surfaced_sign_ins": len(surfaced),
                "user_score": self.user_profile.score if self.user_profile else 0,
                "user_risk_level": self.user_profile.risk_level if self.user_profile else None,
                "breach_probability": self.breach.percentage,
                "breach_status": self.breach.status,
            },
            "user_profile": self.user_profile.to_dict() if self.user_profile else None,
            "user_facts": self.user_facts,
            "breach_probability": self.breach.to_dict(),
            "sign_ins": [s.to_dict() for s in self.sign_ins],
            "surfaced_sign_in_ids": [s.sign_in_id for s in surfaced],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        """Rebuild the stored breakdowns; breach scores are recomputed by the caller."""
        profile = data.get("user_profile")
        return cls(
            user_principal_name=data["user_principal_name"],
            sign_ins=[ScoredSignIn.from_dict(s) for s in data.get("sign_ins", [])],
            user_profile=UserRiskProfile.from_dict(profile) if profile else None,
            display_threshold=int(data.get("display_threshold", 0)),
            lookback_days=int(data.get("lookback_days", 30)),
            excluded_ids=list(data.get("excluded_indicators", [])),
            generated_utc=data.get("generated_utc", ""),
            user_facts=data.get("user_facts"),
        )
