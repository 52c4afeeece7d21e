"""
Configuration module for the M365 Compromise Investigation Engine.
Defines all tunable scoring parameters, lookup endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "AuditLog.Read.All",
        "Directory.Read.All",
        "UserAuthenticationMethod.Read.All",
        "Policy.Read.All",
        "MailboxSettings.Read",
        "DelegatedPermissionGrant.Read.All",
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests to Graph
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 200      # Safety cap on pagination loops


# ─── External Lookups ───────────────────────────────────────────────────────

GEO_LOOKUP_URL = "http://ip-api.com/json/{ip}"
REPUTATION_LOOKUP_URL = "https://api.abuseipdb.com/api/v2/check"


@dataclass
class LookupConfig:
    """Geolocation and reputation lookup settings."""
    geo_enabled: bool = True
    geo_timeout_seconds: float = 5.0
    reputation_enabled: bool = True
    reputation_api_key: str = ""          # Falls back to ABUSEIPDB_API_KEY
    reputation_timeout_seconds: float = 5.0
    reputation_max_age_days: int = 90

    def resolve_reputation_key(self) -> str:
        return self.reputation_api_key or os.environ.get("ABUSEIPDB_API_KEY", "")


# ─── Collection Settings ────────────────────────────────────────────────────

@dataclass
class CollectionConfig:
    """Controls for data collection behavior."""
    lookback_days: int = 30               # Sign-in history window
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = MAX_PAGES_PER_ENDPOINT
    password_reset_days: int = 7          # Reset inside this window = "recent"
    method_change_days: int = 7           # Auth method change inside window = "recent"
    suspicious_rule_keywords: list[str] = field(default_factory=lambda: [
        "invoice", "payment", "wire", "password", "security",
        "phish", "hack", "compromise", "bank", "transfer",
    ])


# ─── Scoring Parameters ─────────────────────────────────────────────────────

LEGACY_PROTOCOLS = [
    "Exchange ActiveSync", "IMAP4", "POP3", "SMTP",
    "Authenticated SMTP", "Other clients",
    "Exchange Web Services", "MAPI Over HTTP",
    "Offline Address Book", "Outlook Anywhere (RPC over HTTP)",
    "AutoDiscover", "Exchange Online PowerShell",
]

# Ordered (threshold, level) tables, evaluated highest first.
SIGNIN_RISK_THRESHOLDS = [
    (10, "Critical"),
    (7, "High"),
    (4, "Medium"),
    (1, "Low"),
]

USER_RISK_THRESHOLDS = [
    (10, "Critical"),
    (7, "High"),
    (4, "Medium"),
]

# Foreign-IP reputation bands: (minimum score, points), evaluated highest first.
REPUTATION_BANDS = [
    (50, 3),
    (26, 2),
    (10, 1),
    (0, 1),
]

EXTERNAL_RISK_SCALE = {
    "high": 4,
    "medium": 2,
    "low": 1,
    "none": 0,
}

CA_PROTECTION_SCALE = {
    "full": 0,
    "partial": 2,
    "block_only": 1,
    "none": 3,
}


@dataclass
class ScoringConfig:
    """Every scoring parameter the indicator engine consumes."""
    points: dict[str, int] = field(default_factory=dict)  # Point overrides by indicator id
    reputation_bands: list[tuple[int, int]] = field(default_factory=lambda: list(REPUTATION_BANDS))
    external_risk_scale: dict[str, int] = field(default_factory=lambda: dict(EXTERNAL_RISK_SCALE))
    ca_protection_scale: dict[str, int] = field(default_factory=lambda: dict(CA_PROTECTION_SCALE))
    signin_thresholds: list[tuple[int, str]] = field(default_factory=lambda: list(SIGNIN_RISK_THRESHOLDS))
    signin_default_level: str = "None"
    user_thresholds: list[tuple[int, str]] = field(default_factory=lambda: list(USER_RISK_THRESHOLDS))
    user_default_level: str = "Low"
    display_threshold: int = 0            # Surface sign-ins with raw score above this
    working_hours_start: int = 8          # Local hour, inclusive
    working_hours_end: int = 18           # Local hour, exclusive
    working_hours_utc_offset: float = 0.0
    expected_countries: list[str] = field(default_factory=list)
    trusted_asns: list[int] = field(default_factory=list)
    high_reputation_threshold: int = 50   # Reputation score treated as "high"
    impossible_travel_speed_kmh: float = 1000.0
    trusted_ip_min_mfa: int = 3
    trusted_ip_min_compliant: int = 3
    new_account_days: int = 7
    mfa_failure_codes: list[int] = field(default_factory=lambda: [
        50074, 50076, 50079, 500121, 50158, 53004,
    ])
    ca_failure_codes: list[int] = field(default_factory=lambda: [
        53000, 53001, 53002, 53003,
    ])
    legacy_protocols: list[str] = field(default_factory=lambda: list(LEGACY_PROTOCOLS))


# ─── Breach Probability ─────────────────────────────────────────────────────

BREACH_CATEGORY_CAPS = {
    "credential_compromise": 40,
    "session_anomalies": 35,
    "configuration_weakness": 20,
    "temporal_concentration": 5,
}

BREACH_STATUS_TIERS = [
    (71, "High Likelihood"),
    (41, "Probable"),
    (21, "Possible"),
]


@dataclass
class BreachConfig:
    """Weights, caps, multipliers and tiers for the breach-probability model."""
    caps: dict[str, int] = field(default_factory=lambda: dict(BREACH_CATEGORY_CAPS))
    weights: dict[str, int] = field(default_factory=dict)  # Per-indicator weight overrides
    credential_multiplier: float = 1.3
    privileged_multiplier: float = 1.2
    breadth_multiplier: float = 1.15
    breadth_min_categories: int = 3
    status_tiers: list[tuple[int, str]] = field(default_factory=lambda: list(BREACH_STATUS_TIERS))
    default_status: str = "Unlikely"
    temporal_window_minutes: int = 60
    temporal_min_events: int = 5
    temporal_min_score: int = 4
    temporal_weight: int = 5


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: ["json", "csv"])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(
                os.getcwd(),
                f"m365_compromise_{self.timestamp}"
            )

    @property
    def output_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    breach: BreachConfig = field(default_factory=BreachConfig)
    lookups: LookupConfig = field(default_factory=LookupConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path) -> "EngineConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load configuration {path}: {e}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        config = cls()
        try:
            config.auth = _load_auth(data.get("auth") or {})
        except KeyError as e:
            raise ConfigError(f"Missing auth setting: {e}")
        for section in ("collection", "scoring", "breach", "lookups", "output"):
            target = getattr(config, section)
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, _coerce(getattr(target, k), v))
        config.verbose = data.get("verbose", False)
        return config


def _load_auth(auth_data: dict) -> AuthConfig:
    auth = AuthConfig(mode=auth_data.get("mode", "certificate"))
    if "certificate" in auth_data:
        c = auth_data["certificate"]
        auth.certificate = CertificateAuth(
            tenant_id=c["tenant_id"],
            client_id=c["client_id"],
            certificate_path=c.get("certificate_path", "./base64.txt"),
            certificate_password=c.get("certificate_password", ""),
        )
    if "delegated" in auth_data:
        d = auth_data["delegated"]
        auth.delegated = DelegatedAuth(tenant_id=d["tenant_id"], client_id=d["client_id"])
    return auth


def _coerce(current, value):
    """JSON has no tuples; threshold tables come back as lists of lists."""
    if isinstance(current, list) and current and isinstance(current[0], tuple):
        return [tuple(item) for item in value]
    return value


# ─── Required Graph API Permissions (Read-Only) ─────────────────────────────

REQUIRED_PERMISSIONS = {
    "AuditLog.Read.All": "Read sign-in logs and directory audit events",
    "Directory.Read.All": "Read user profile and directory role memberships",
    "UserAuthenticationMethod.Read.All": "Read registered authentication methods",
    "Policy.Read.All": "Read Conditional Access policies and named locations",
    "MailboxSettings.Read": "Read inbox message rules",
    "DelegatedPermissionGrant.Read.All": "Read OAuth2 consent grants",
}
