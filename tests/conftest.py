"""Shared fixtures for the compromise engine tests."""

from datetime import datetime, timedelta, timezone

import pytest

from m365_compromise_engine.config import EngineConfig, ScoringConfig
from m365_compromise_engine.models import (
    CaProtection,
    DeviceInfo,
    Location,
    SignInFact,
    UserFacts,
)
from m365_compromise_engine.scoring.models import IndicatorOutcome
from m365_compromise_engine.scoring.rules import RuleRegistry

# Monday, inside the default 08:00-18:00 UTC working window
BASE_TIME = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)

USER = "alice@contoso.com"

AMSTERDAM = {"city": "Amsterdam", "country": "NL", "latitude": 52.3676, "longitude": 4.9041}
NEW_YORK = {"city": "New York", "country": "US", "latitude": 40.7128, "longitude": -74.0060}


def build_sign_in(
    sign_in_id="s1",
    minutes=0,
    ip="198.51.100.10",
    location=AMSTERDAM,
    device=None,
    **overrides,
) -> SignInFact:
    """A successful, MFA-satisfied browser sign-in unless overridden."""
    fields = {
        "client_app": "Browser",
        "conditional_access_status": "success",
        "auth_factors_completed": 2,
    }
    fields.update(overrides)
    return SignInFact(
        id=sign_in_id,
        user_principal_name=USER,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        ip_address=ip,
        location=Location(**location) if location else None,
        device=device or DeviceInfo(operating_system="Windows 10", browser="Edge", device_id="dev-1"),
        **fields,
    )


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_sign_in():
    """Factory for SignInFact records."""
    return build_sign_in


@pytest.fixture
def amsterdam():
    return dict(AMSTERDAM)


@pytest.fixture
def new_york():
    return dict(NEW_YORK)


@pytest.fixture
def registry():
    """Default indicator registry."""
    return RuleRegistry.from_config()


@pytest.fixture
def scoring_config():
    """Scoring with NL as the expected country and one trusted ASN."""
    return ScoringConfig(expected_countries=["NL"], trusted_asns=[1136])


@pytest.fixture
def engine_config(scoring_config):
    """Engine configuration with every network lookup switched off."""
    config = EngineConfig(scoring=scoring_config)
    config.lookups.geo_enabled = False
    config.lookups.reputation_enabled = False
    return config


@pytest.fixture
def clean_user_facts():
    """An established account with MFA registered and full CA coverage."""
    return UserFacts(
        user_principal_name=USER,
        display_name="Alice",
        auth_method_count=2,
        created=BASE_TIME - timedelta(days=400),
        ca_protection=CaProtection(full_coverage=True),
    )


@pytest.fixture
def make_outcome(registry):
    """Applicable outcome carrying the registry value for a rule id."""
    def _make(rule_id, band=None, excluded=False):
        rule = registry[rule_id]
        points = rule.scaled_points(band) if band else rule.points
        return IndicatorOutcome(
            id=rule.id,
            label=rule.label,
            points=points,
            applicable=points != 0,
            category=rule.category,
            detail=band,
            excluded=excluded,
        )
    return _make
