"""Tests for the command line entry point (offline input only)."""

import json

import pytest

from m365_compromise_engine.__main__ import EXIT_ERROR, EXIT_NO_DATA, EXIT_OK, main


@pytest.fixture
def raw_export(tmp_path):
    """A raw Graph export as written by `analyze --save-raw`."""
    payload = {
        "user_principal_name": "alice@contoso.com",
        "user": {
            "id": "u1",
            "displayName": "Alice",
            "userPrincipalName": "alice@contoso.com",
            "createdDateTime": "2024-03-01T08:00:00Z",
        },
        "auth_methods": [],
        "directory_audits": [],
        "message_rules": [],
        "oauth_grants": [],
        "directory_roles": [],
        "group_ids": [],
        "ca_policies": [],
        "named_locations": [],
        "sign_ins": [
            {
                "id": "s1",
                "createdDateTime": "2026-01-05T10:00:00Z",
                "ipAddress": "198.51.100.10",
                "clientAppUsed": "Browser",
                "correlationId": "c1",
                "status": {"errorCode": 0},
                "authenticationRequirement": "multiFactorAuthentication",
                "location": {"city": "Amsterdam", "countryOrRegion": "NL",
                             "geoCoordinates": {"latitude": 52.3676, "longitude": 4.9041}},
            },
            {
                "id": "s2",
                "createdDateTime": "2026-01-05T11:00:00Z",
                "ipAddress": "203.0.113.50",
                "clientAppUsed": "IMAP4",
                "correlationId": "c1",
                "status": {"errorCode": 0},
                "authenticationRequirement": "singleFactorAuthentication",
                "location": {"city": "New York", "countryOrRegion": "US",
                             "geoCoordinates": {"latitude": 40.7128, "longitude": -74.0060}},
            },
        ],
    }
    path = tmp_path / "raw_alice.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def analyze(raw_path, output_dir, *extra):
    return main([
        "analyze", "--input", str(raw_path), "--no-geo", "--no-reputation",
        "--expected-country", "NL", "-o", str(output_dir), *extra,
    ])


class TestAnalyzeCommand:
    """Offline analysis from a raw export."""

    def test_writes_json_and_csv(self, raw_export, tmp_path, capsys):
        out = tmp_path / "out"
        assert analyze(raw_export, out) == EXIT_OK

        results = list(out.glob("compromise_*.json"))
        assert len(results) == 1
        payload = json.loads(results[0].read_text(encoding="utf-8"))
        assert payload["result"]["summary"]["total_sign_ins"] == 2
        assert len(list(out.glob("*.csv"))) == 3
        assert "Breach Probability" in capsys.readouterr().out

    def test_rules_format(self, raw_export, tmp_path):
        out = tmp_path / "out"
        assert analyze(raw_export, out, "--formats", "rules") == EXIT_OK
        assert (out / "indicator_rules.json").exists()

    def test_missing_account_is_no_data(self, raw_export, tmp_path):
        payload = json.loads(raw_export.read_text(encoding="utf-8"))
        payload["user"] = None
        raw_export.write_text(json.dumps(payload), encoding="utf-8")
        assert analyze(raw_export, tmp_path / "out") == EXIT_NO_DATA

    def test_no_sign_ins_is_no_data(self, raw_export, tmp_path):
        payload = json.loads(raw_export.read_text(encoding="utf-8"))
        payload["sign_ins"] = []
        raw_export.write_text(json.dumps(payload), encoding="utf-8")
        assert analyze(raw_export, tmp_path / "out") == EXIT_NO_DATA

    def test_unmatched_upn_is_no_data(self, raw_export, tmp_path):
        assert analyze(raw_export, tmp_path / "out", "bob@contoso.com") == EXIT_NO_DATA

    def test_online_mode_needs_credentials(self):
        assert main(["analyze", "alice@contoso.com"]) == EXIT_ERROR


class TestRecomputeCommand:
    """Recompute a stored result."""

    def test_recompute_with_exclusions(self, raw_export, tmp_path, capsys):
        out = tmp_path / "out"
        analyze(raw_export, out)
        stored = next(out.glob("compromise_*.json"))

        recomputed_dir = tmp_path / "recomputed"
        assert main(["recompute", str(stored), "-x", "SR-07", "-o", str(recomputed_dir)]) == EXIT_OK
        written = json.loads(next(recomputed_dir.glob("compromise_*.json")).read_text(encoding="utf-8"))
        assert written["result"]["excluded_indicators"] == ["SR-07"]
        assert "->" in capsys.readouterr().out

    def test_missing_result_file(self, tmp_path):
        assert main(["recompute", str(tmp_path / "nope.json"), "-o", str(tmp_path)]) == EXIT_ERROR


class TestRulesCommand:
    """Registry listing."""

    def test_lists_and_exports(self, tmp_path, capsys):
        assert main(["rules", "--export", "-o", str(tmp_path)]) == EXIT_OK
        output = capsys.readouterr().out
        assert "SR-05" in output
        assert "scale: 50+=3" in output
        assert (tmp_path / "indicator_rules.json").exists()

    def test_bad_config_file(self, tmp_path):
        assert main(["rules", "--config", str(tmp_path / "missing.json")]) == EXIT_ERROR

    def test_no_command(self):
        assert main([]) == EXIT_ERROR
