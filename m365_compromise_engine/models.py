"""
Fact models — Normalized sign-in and account facts consumed by the evaluators.

Collectors (or an offline JSON loader) produce these; the Session Correlator
and Impossible-Travel Detector annotate SignInFact.session_flags / .travel.
Nothing else writes to a fact after it is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Graph ISO-8601 timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("Z", "+00:00")
    # Graph emits up to 7 fractional digits; fromisoformat accepts at most 6
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        for ch in tail:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail[len(digits):]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Location:
    city: str = ""
    state: str = ""
    country: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def label(self) -> str:
        parts = [p for p in (self.city, self.country) if p]
        return ", ".join(parts) or "Unknown"

    def to_dict(self) -> dict:
        return {
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass
class DeviceInfo:
    operating_system: str = ""
    browser: str = ""
    trust_type: str = ""                # AzureAd, Hybrid Azure AD joined, ServerAd, ...
    is_compliant: bool = False
    is_managed: bool = False
    device_id: str = ""

    @property
    def is_domain_joined(self) -> bool:
        trust = (self.trust_type or "").lower()
        return "hybrid" in trust or trust in ("serverad", "domain joined")

    def to_dict(self) -> dict:
        return {
            "operating_system": self.operating_system,
            "browser": self.browser,
            "trust_type": self.trust_type,
            "is_compliant": self.is_compliant,
            "is_managed": self.is_managed,
            "device_id": self.device_id,
        }


@dataclass
class RiskSignal:
    """Identity Protection risk attached to a sign-in."""
    level: str = "none"                 # high, medium, low, none, hidden
    detail: str = ""

    def to_dict(self) -> dict:
        return {"level": self.level, "detail": self.detail}


@dataclass
class SessionFlags:
    ip_changed: bool = False
    country_changed: bool = False
    device_changed: bool = False

    @property
    def flagged(self) -> bool:
        return self.ip_changed or self.country_changed or self.device_changed

    def raise_from(self, other: "SessionFlags"):
        """Flags only ever go from false to true within a run."""
        self.ip_changed = self.ip_changed or other.ip_changed
        self.country_changed = self.country_changed or other.country_changed
        self.device_changed = self.device_changed or other.device_changed

    def to_dict(self) -> dict:
        return {
            "ip_changed": self.ip_changed,
            "country_changed": self.country_changed,
            "device_changed": self.device_changed,
        }


@dataclass
class TravelEvidence:
    """Why a sign-in was flagged as impossible travel."""
    previous_sign_in_id: str
    origin_ip: str
    destination_ip: str
    origin: Location
    destination: Location
    distance_km: float
    elapsed_hours: float
    speed_kmh: float

    def to_dict(self) -> dict:
        return {
            "previous_sign_in_id": self.previous_sign_in_id,
            "origin_ip": self.origin_ip,
            "destination_ip": self.destination_ip,
            "origin": self.origin.to_dict(),
            "destination": self.destination.to_dict(),
            "distance_km": round(self.distance_km, 1),
            "elapsed_hours": round(self.elapsed_hours, 3),
            "speed_kmh": round(self.speed_kmh, 1),
        }


@dataclass
class SignInFact:
    """One authentication event."""
    id: str
    user_principal_name: str
    timestamp: datetime
    ip_address: str = ""
    location: Optional[Location] = None
    device: DeviceInfo = field(default_factory=DeviceInfo)
    client_app: str = ""
    conditional_access_status: str = ""   # success, failure, notApplied
    auth_factors_completed: int = 0
    correlation_id: str = ""
    risk: Optional[RiskSignal] = None
    failure_code: Optional[int] = None
    failure_reason: str = ""
    asn: Optional[int] = None
    reputation_score: Optional[int] = None
    app_display_name: str = ""

    # Annotations written by the correlator and the travel detector
    session_flags: SessionFlags = field(default_factory=SessionFlags)
    travel: Optional[TravelEvidence] = None

    @property
    def succeeded(self) -> bool:
        return not self.failure_code

    @property
    def country(self) -> str:
        return self.location.country if self.location else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_principal_name": self.user_principal_name,
            "timestamp": self.timestamp.isoformat(),
            "ip_address": self.ip_address,
            "location": self.location.to_dict() if self.location else None,
            "device": self.device.to_dict(),
            "client_app": self.client_app,
            "app_display_name": self.app_display_name,
            "conditional_access_status": self.conditional_access_status,
            "auth_factors_completed": self.auth_factors_completed,
            "correlation_id": self.correlation_id,
            "risk": self.risk.to_dict() if self.risk else None,
            "failure_code": self.failure_code,
            "failure_reason": self.failure_reason,
            "asn": self.asn,
            "reputation_score": self.reputation_score,
            "session_flags": self.session_flags.to_dict(),
            "travel": self.travel.to_dict() if self.travel else None,
        }


@dataclass
class ForwardingConfig:
    enabled: bool = False
    target: str = ""
    external: bool = False

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "target": self.target, "external": self.external}


@dataclass
class CaProtection:
    """Conditional Access coverage of the account, as derived from policies."""
    full_coverage: bool = False         # MFA/compliance required for all apps
    partial_coverage: bool = False      # Some enforcing policy targets the account
    block_policy: bool = False          # Only block policies apply (e.g. legacy auth)

    def to_dict(self) -> dict:
        return {
            "full_coverage": self.full_coverage,
            "partial_coverage": self.partial_coverage,
            "block_policy": self.block_policy,
        }


@dataclass
class UserFacts:
    """Per-account configuration facts."""
    user_principal_name: str
    display_name: str = ""
    auth_method_count: int = 0          # Registered methods excluding password
    auth_method_changed_recently: bool = False
    delegate_count: int = 0
    forwarding: ForwardingConfig = field(default_factory=ForwardingConfig)
    suspicious_rule_count: int = 0
    third_party_consent_count: int = 0
    admin_role_count: int = 0
    admin_roles: list[str] = field(default_factory=list)
    created: Optional[datetime] = None
    password_reset_recently: bool = False
    ca_protection: CaProtection = field(default_factory=CaProtection)

    def account_age_days(self, now: Optional[datetime] = None) -> Optional[float]:
        if not self.created:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self.created).total_seconds() / 86400

    def to_dict(self) -> dict:
        return {
            "user_principal_name": self.user_principal_name,
            "display_name": self.display_name,
            "auth_method_count": self.auth_method_count,
            "auth_method_changed_recently": self.auth_method_changed_recently,
            "delegate_count": self.delegate_count,
            "forwarding": self.forwarding.to_dict(),
            "suspicious_rule_count": self.suspicious_rule_count,
            "third_party_consent_count": self.third_party_consent_count,
            "admin_role_count": self.admin_role_count,
            "admin_roles": self.admin_roles,
            "created": self.created.isoformat() if self.created else None,
            "password_reset_recently": self.password_reset_recently,
            "ca_protection": self.ca_protection.to_dict(),
        }


@dataclass
class AccountData:
    """Everything the engine needs for one account, as produced by the data adapter."""
    user_principal_name: str
    sign_ins: list[SignInFact] = field(default_factory=list)
    user_facts: Optional[UserFacts] = None
    named_locations: list[dict] = field(default_factory=list)
    skipped_records: int = 0
