"""Unit tests for the CIDR matcher."""

import logging

import pytest

from m365_compromise_engine.enrichment.cidr import CidrMatcher, ip_in_cidr, parse_cidr


class TestIpInCidr:
    """Single address against a single range."""

    @pytest.mark.parametrize("address,cidr,expected", [
        ("10.1.2.3", "10.0.0.0/8", True),
        ("11.0.0.1", "10.0.0.0/8", False),
        ("192.168.1.1", "0.0.0.0/0", True),
        ("203.0.113.7", "203.0.113.7/32", True),
        ("203.0.113.8", "203.0.113.7/32", False),
        ("203.0.113.7", "203.0.113.7", True),
        ("172.16.5.4", "172.16.0.0/12", True),
        ("172.32.0.1", "172.16.0.0/12", False),
    ])
    def test_ipv4(self, address, cidr, expected):
        assert ip_in_cidr(address, cidr) is expected

    @pytest.mark.parametrize("address,cidr,expected", [
        ("2001:db8::1", "2001:db8::/32", True),
        ("2001:db9::1", "2001:db8::/32", False),
        ("2001:db8:7fff::1", "2001:db8::/33", True),
        ("2001:db8:8000::1", "2001:db8::/33", False),
        ("::1", "::/0", True),
    ])
    def test_ipv6_with_partial_byte(self, address, cidr, expected):
        assert ip_in_cidr(address, cidr) is expected

    def test_versions_never_mix(self):
        assert not ip_in_cidr("10.0.0.1", "::/0")
        assert not ip_in_cidr("::1", "0.0.0.0/0")

    @pytest.mark.parametrize("cidr", ["10.0.0.0/33", "banana", "10.0.0.0/abc", "", "2001:db8::/129"])
    def test_malformed_ranges_never_match(self, cidr, caplog):
        with caplog.at_level(logging.WARNING, logger="m365_compromise_engine.enrichment.cidr"):
            assert not ip_in_cidr("10.0.0.1", cidr)
        assert parse_cidr(cidr) is None
        assert "Skipping malformed CIDR range" in caplog.text

    def test_bad_address(self):
        assert not ip_in_cidr("not-an-ip", "10.0.0.0/8")


class TestCidrMatcher:
    """Ranges parsed once and matched many times."""

    def test_skips_malformed_and_matches_rest(self):
        matcher = CidrMatcher(["10.0.0.0/8", "bogus", "2001:db8::/32"])
        assert len(matcher) == 2
        assert matcher.skipped == ["bogus"]
        assert matcher.match("10.9.9.9") == "10.0.0.0/8"
        assert matcher.match("2001:db8::42") == "2001:db8::/32"
        assert matcher.match("8.8.8.8") is None

    def test_empty_inputs(self):
        matcher = CidrMatcher()
        assert len(matcher) == 0
        assert matcher.match("10.0.0.1") is None
        assert CidrMatcher(["10.0.0.0/8"]).match("") is None
