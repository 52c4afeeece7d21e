"""Integration tests for the investigation pipeline."""

from datetime import timedelta

import pytest

from m365_compromise_engine.models import AccountData, CaProtection, DeviceInfo, RiskSignal, UserFacts
from m365_compromise_engine.pipeline import InvestigationEngine, NoDataError, RunContext
from m365_compromise_engine.enrichment.reputation import ReputationCache


@pytest.fixture
def weak_user_facts(base_time):
    """No MFA registered and no CA coverage."""
    return UserFacts(
        user_principal_name="alice@contoso.com",
        auth_method_count=0,
        created=base_time - timedelta(days=400),
        ca_protection=CaProtection(),
    )


@pytest.fixture
def account(make_sign_in, new_york, weak_user_facts):
    """Amsterdam -> New York -> Amsterdam, an hour apart, first two in one session."""
    return AccountData(
        user_principal_name="alice@contoso.com",
        sign_ins=[
            make_sign_in("s1", 0, ip="198.51.100.10", correlation_id="c1",
                         device=DeviceInfo(is_compliant=True, device_id="dev-1")),
            make_sign_in("s2", 60, ip="203.0.113.50", location=new_york, correlation_id="c1",
                         client_app="IMAP4", auth_factors_completed=1, risk=RiskSignal(level="high")),
            make_sign_in("s3", 120, ip="198.51.100.10"),
        ],
        user_facts=weak_user_facts,
    )


@pytest.fixture
def engine(engine_config):
    return InvestigationEngine(engine_config)


@pytest.fixture
def shared_address_accounts(make_sign_in, clean_user_facts):
    """Alice signs in from 192.0.2.1 on a compliant device three times, Bob once."""
    compliant = DeviceInfo(is_compliant=True, device_id="dev-1")
    regular = AccountData(
        user_principal_name="alice@contoso.com",
        sign_ins=[make_sign_in(f"a{i}", i, ip="192.0.2.1", device=compliant) for i in range(3)],
        user_facts=clean_user_facts,
        named_locations=[{"isTrusted": True, "ipRanges": [{"cidrAddress": "192.0.2.0/24"}]}],
    )
    newcomer = AccountData(
        user_principal_name="bob@contoso.com",
        sign_ins=[make_sign_in("b1", 0, ip="192.0.2.1", device=compliant)],
        user_facts=clean_user_facts,
    )
    return [regular, newcomer]


class TestInvestigationEngine:
    """End-to-end scoring of one account."""

    def test_sign_in_breakdowns(self, engine, account, base_time):
        result = engine.analyze(account, now=base_time)
        scored = {s.sign_in_id: s for s in result.sign_ins}

        assert sorted(scored["s2"].applicable_ids()) == [
            "SR-01", "SR-04", "SR-07", "SR-09", "SR-10", "SR-11", "SR-16",
        ]
        assert scored["s2"].raw_score == 18
        assert scored["s2"].risk_level == "Critical"

        assert sorted(scored["s1"].applicable_ids()) == ["SR-09", "SR-10", "SR-11", "SR-14", "SR-15"]
        assert scored["s1"].raw_score == 2
        assert scored["s1"].risk_level == "Low"

        assert sorted(scored["s3"].applicable_ids()) == ["SR-07", "SR-15"]
        assert scored["s3"].raw_score == 3

    def test_user_profile_and_breach(self, engine, account, base_time):
        result = engine.analyze(account, now=base_time)
        assert result.user_profile.score == 7
        assert result.user_profile.risk_level == "High"

        breach = result.breach
        assert breach.categories["credential_compromise"].score == 13
        assert breach.categories["session_anomalies"].score == 35
        assert breach.categories["configuration_weakness"].score == 14
        assert breach.categories["temporal_concentration"].score == 0
        # 62 * 1.3 * 1.15 = 92.69
        assert breach.percentage == 93
        assert breach.status == "High Likelihood"

    def test_surfaced_sign_ins(self, engine, account, base_time):
        result = engine.analyze(account, now=base_time)
        assert [s.sign_in_id for s in result.surfaced_sign_ins] == ["s1", "s2", "s3"]
        assert result.user_facts["auth_method_count"] == 0

    def test_reputation_from_context(self, engine_config, account, base_time):
        cache = ReputationCache()
        cache.prime("203.0.113.50", 80)
        engine = InvestigationEngine(engine_config, RunContext(reputation_cache=cache))
        result = engine.analyze(account, now=base_time)
        s2 = next(s for s in result.sign_ins if s.sign_in_id == "s2")
        foreign = next(o for o in s2.outcomes if o.id == "SR-05")
        assert foreign.points == 3
        assert foreign.detail == "50+"


class TestNoData:
    """Accounts that cannot produce a result."""

    def test_account_not_found(self, engine):
        with pytest.raises(NoDataError) as exc:
            engine.analyze(AccountData(user_principal_name="ghost@contoso.com"))
        assert exc.value.reason == "account not found"
        assert exc.value.user_principal_name == "ghost@contoso.com"

    def test_no_sign_ins(self, engine, clean_user_facts):
        data = AccountData(user_principal_name="alice@contoso.com", user_facts=clean_user_facts)
        with pytest.raises(NoDataError, match="no sign-ins"):
            engine.analyze(data)


class TestBatch:
    """Several accounts in one run."""

    def test_mixed_results(self, engine, account, clean_user_facts, base_time):
        empty = AccountData(user_principal_name="bob@contoso.com", user_facts=clean_user_facts)
        results = engine.analyze_many([account, empty], now=base_time)
        assert results["alice@contoso.com"].breach.percentage == 93
        assert isinstance(results["bob@contoso.com"], NoDataError)

    def test_trusted_ip_profile_rebuilt_per_account(self, engine, shared_address_accounts, base_time):
        results = engine.analyze_many(shared_address_accounts, now=base_time)
        assert "SR-19" in results["alice@contoso.com"].sign_ins[0].applicable_ids()
        assert "SR-19" not in results["bob@contoso.com"].sign_ins[0].applicable_ids()

    def test_separate_analyze_calls_do_not_share_history(self, engine, shared_address_accounts, base_time):
        regular, newcomer = shared_address_accounts
        first = engine.analyze(regular, now=base_time)
        second = engine.analyze(newcomer, now=base_time)

        assert {"SR-17", "SR-18", "SR-19"} <= set(first.sign_ins[0].applicable_ids())
        assert sorted(second.sign_ins[0].applicable_ids()) == ["SR-14", "SR-15"]
        assert engine.context.trusted_ip_profiler.profile.history("192.0.2.1").total == 1
