"""Tests for false-positive recomputation parity."""

from datetime import timedelta

import pytest

from m365_compromise_engine.models import AccountData, CaProtection, DeviceInfo, RiskSignal, UserFacts
from m365_compromise_engine.pipeline import InvestigationEngine
from m365_compromise_engine.scoring.breach import assess_breach_probability
from m365_compromise_engine.scoring.engine import score_sign_in, score_user


def comparable(result):
    """to_dict() without the generation timestamp."""
    payload = result.to_dict()
    payload.pop("generated_utc")
    return payload


@pytest.fixture
def engine(engine_config):
    return InvestigationEngine(engine_config)


@pytest.fixture
def result(engine, make_sign_in, new_york, base_time):
    """Primary-pass result for a traveller with a weak account configuration."""
    data = AccountData(
        user_principal_name="alice@contoso.com",
        sign_ins=[
            make_sign_in("s1", 0, ip="198.51.100.10", correlation_id="c1",
                         device=DeviceInfo(is_compliant=True, device_id="dev-1")),
            make_sign_in("s2", 60, ip="203.0.113.50", location=new_york, correlation_id="c1",
                         client_app="IMAP4", auth_factors_completed=1, risk=RiskSignal(level="high")),
            make_sign_in("s3", 120, ip="198.51.100.10"),
        ],
        user_facts=UserFacts(
            user_principal_name="alice@contoso.com",
            auth_method_count=0,
            created=base_time - timedelta(days=400),
            ca_protection=CaProtection(),
        ),
    )
    return engine.analyze(data, now=base_time)


class TestRecomputeParity:
    """Empty exclusion set reproduces the primary pass."""

    def test_empty_exclusion_set_is_identical(self, engine, result):
        recomputed = engine.recompute(result, [])
        assert comparable(recomputed) == comparable(result)
        assert recomputed.breach.percentage == result.breach.percentage == 93

    def test_recompute_is_idempotent(self, engine, result):
        once = engine.recompute(result, {"SR-07"})
        twice = engine.recompute(result, {"SR-07"})
        chained = engine.recompute(once, {"SR-07"})
        assert comparable(once) == comparable(twice) == comparable(chained)

    def test_exclusions_do_not_accumulate(self, engine, result):
        first = engine.recompute(result, {"SR-07"})
        restored = engine.recompute(first, [])
        assert comparable(restored) == comparable(result)


class TestRecomputeExclusions:
    """Excluded indicators drop out of every stage."""

    def test_single_exclusion_removes_exactly_its_points(self, engine, result):
        recomputed = engine.recompute(result, ["SR-07"])
        for before, after in zip(result.sign_ins, recomputed.sign_ins):
            travel = next(o for o in before.outcomes if o.id == "SR-07")
            assert after.raw_score == before.raw_score - (travel.points if travel.applicable else 0)
        assert recomputed.excluded_ids == ["SR-07"]

    def test_risk_level_follows_recomputed_score(self, engine, result):
        recomputed = engine.recompute(result, ["SR-07"])
        s3 = next(s for s in recomputed.sign_ins if s.sign_in_id == "s3")
        assert s3.raw_score == -1
        assert s3.score == 0
        assert s3.risk_level == "None"
        assert "s3" not in [s.sign_in_id for s in recomputed.surfaced_sign_ins]

    def test_fully_excluded_category_is_zero(self, engine, result):
        recomputed = engine.recompute(result, ["SR-01", "SR-07", "SR-09", "SR-10", "SR-11"])
        breach = recomputed.breach
        assert breach.categories["session_anomalies"].score == 0
        # (13 + 14) * 1.3 = 35.1
        assert breach.percentage == 35
        assert breach.status == "Possible"

    def test_user_indicator_exclusion(self, engine, result):
        recomputed = engine.recompute(result, ["UR-01"])
        assert recomputed.user_profile.score == 3
        assert recomputed.user_profile.risk_level == "Low"
        assert recomputed.breach.categories["configuration_weakness"].score == 6

    def test_unknown_ids_ignored(self, engine, result):
        recomputed = engine.recompute(result, ["XR-99"])
        assert recomputed.excluded_ids == []
        assert recomputed.breach.percentage == result.breach.percentage

    def test_primary_result_untouched(self, engine, result):
        engine.recompute(result, ["SR-07", "UR-01"])
        assert not any(o.excluded for s in result.sign_ins for o in s.outcomes)
        assert result.breach.percentage == 93


class TestRecomputeMatchesFreshAssessment:
    """Excluding an indicator equals scoring without it from the start."""

    @pytest.mark.parametrize("rule_id", ["SR-07", "SR-01", "SR-10", "UR-01", "UR-10"])
    def test_breach_matches_assessment_without_indicator(self, engine, result, rule_id):
        scoring = engine.config.scoring
        sign_ins = [
            score_sign_in(
                s.sign_in_id,
                s.timestamp,
                [o for o in s.outcomes if o.id != rule_id],
                scoring,
                session_flags=s.session_flags,
            )
            for s in result.sign_ins
        ]
        user_profile = score_user(
            result.user_principal_name,
            [o for o in result.user_profile.outcomes if o.id != rule_id],
            scoring,
        )
        fresh = assess_breach_probability(sign_ins, user_profile, engine.registry, engine.config.breach)

        recomputed = engine.recompute(result, [rule_id])
        assert recomputed.breach.to_dict() == fresh.to_dict()
        assert [s.raw_score for s in recomputed.sign_ins] == [s.raw_score for s in sign_ins]
        assert recomputed.user_profile.score == user_profile.score
