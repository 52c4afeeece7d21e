"""Unit tests for the indicator rule registry."""

import pytest

from m365_compromise_engine.config import BreachConfig, ScoringConfig
from m365_compromise_engine.scoring.rules import (
    SAFETY,
    SIGNIN,
    USER,
    IndicatorRule,
    RuleRegistry,
    reputation_band_labels,
    resolve_reputation_band,
)


class TestRegistryContents:
    """The default table."""

    def test_all_indicator_ids_in_order(self, registry):
        expected = [f"SR-{i:02d}" for i in range(1, 20)] + [f"UR-{i:02d}" for i in range(1, 11)]
        assert list(registry.rules) == expected

    def test_scopes(self, registry):
        assert len(registry.for_scope(SIGNIN)) == 19
        assert len(registry.for_scope(USER)) == 10

    def test_safety_rules_are_negative(self, registry):
        safety = [r for r in registry.rules.values() if r.category == SAFETY]
        assert {r.id for r in safety} == {"SR-13", "SR-14", "SR-15", "SR-17", "SR-18", "SR-19"}
        assert all(r.points < 0 for r in safety)

    def test_compliant_history_outweighs_mfa_history(self, registry):
        """Compliant-device history is the stronger assurance."""
        assert abs(registry["SR-19"].points) > abs(registry["SR-18"].points)

    def test_variable_scales(self, registry):
        assert registry["SR-05"].scale == (("50+", 3), ("26-49", 2), ("10-25", 1), ("0-9", 1))
        assert dict(registry["SR-16"].scale) == {"high": 4, "medium": 2, "low": 1, "none": 0}
        assert dict(registry["UR-10"].scale) == {"full": 0, "partial": 2, "block_only": 1, "none": 3}
        assert registry["UR-10"].points == 3

    def test_unknown_band_raises(self, registry):
        with pytest.raises(KeyError):
            registry["SR-16"].scaled_points("severe")


class TestRegistryConfiguration:
    """Overrides and validation."""

    def test_point_and_weight_overrides(self):
        registry = RuleRegistry.from_config(
            ScoringConfig(points={"SR-01": 5}),
            BreachConfig(weights={"SR-07": 20}),
        )
        assert registry["SR-01"].points == 5
        assert registry["SR-07"].breach_weight == 20

    def test_custom_external_risk_scale(self):
        registry = RuleRegistry.from_config(
            ScoringConfig(external_risk_scale={"high": 6, "medium": 3, "low": 1, "none": 0})
        )
        assert registry["SR-16"].scaled_points("high") == 6
        assert registry["SR-16"].points == 6

    def test_duplicate_ids_rejected(self):
        rule = IndicatorRule("XR-01", "Example", 1)
        with pytest.raises(ValueError, match="Duplicate indicator id"):
            RuleRegistry.build([rule, rule])

    def test_to_dict_carries_scale(self, registry):
        payload = registry.to_dict()
        assert payload["SR-05"]["scale"] == {"50+": 3, "26-49": 2, "10-25": 1, "0-9": 1}
        assert payload["SR-01"]["scale"] is None


class TestReputationBands:
    """Monotonic reputation scale."""

    @pytest.mark.parametrize("score,label,points", [
        (0, "0-9", 1),
        (9, "0-9", 1),
        (10, "10-25", 1),
        (25, "10-25", 1),
        (26, "26-49", 2),
        (49, "26-49", 2),
        (50, "50+", 3),
        (100, "50+", 3),
    ])
    def test_band_edges(self, score, label, points):
        assert resolve_reputation_band(score, ScoringConfig().reputation_bands) == (label, points)

    def test_labels_follow_band_order_not_input_order(self):
        labels = reputation_band_labels([(0, 1), (50, 3), (10, 1), (26, 2)])
        assert [label for label, _, _ in labels] == ["50+", "26-49", "10-25", "0-9"]

    def test_points_never_decrease_with_score(self):
        bands = ScoringConfig().reputation_bands
        points = [resolve_reputation_band(s, bands)[1] for s in range(0, 101)]
        assert points == sorted(points)
