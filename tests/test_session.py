"""Unit tests for session correlation."""

import pytest

from m365_compromise_engine.analyzers.session import SessionCorrelator
from m365_compromise_engine.models import DeviceInfo


@pytest.fixture
def correlator():
    return SessionCorrelator()


class TestSessionCorrelator:
    """Group-level flags propagated to every member."""

    def test_ip_change_flags_every_member(self, correlator, make_sign_in):
        sign_ins = [
            make_sign_in("a", 0, ip="198.51.100.1", correlation_id="c1"),
            make_sign_in("b", 5, ip="198.51.100.1", correlation_id="c1"),
            make_sign_in("c", 10, ip="198.51.100.2", correlation_id="c1"),
        ]
        groups = correlator.correlate(sign_ins)
        assert groups["c1"].flags.ip_changed
        for s in sign_ins:
            assert s.session_flags.ip_changed
            assert not s.session_flags.country_changed
            assert not s.session_flags.device_changed

    def test_country_and_device_change(self, correlator, make_sign_in, new_york):
        sign_ins = [
            make_sign_in("a", 0, correlation_id="c1"),
            make_sign_in("b", 5, location=new_york, correlation_id="c1",
                         device=DeviceInfo(device_id="dev-2")),
        ]
        correlator.correlate(sign_ins)
        assert sign_ins[0].session_flags == sign_ins[1].session_flags
        assert sign_ins[0].session_flags.country_changed
        assert sign_ins[0].session_flags.device_changed

    def test_blank_device_ids_are_ignored(self, correlator, make_sign_in):
        sign_ins = [
            make_sign_in("a", 0, correlation_id="c1"),
            make_sign_in("b", 5, correlation_id="c1", device=DeviceInfo(device_id="")),
        ]
        correlator.correlate(sign_ins)
        assert not sign_ins[1].session_flags.device_changed

    def test_single_member_group_is_not_flagged(self, correlator, make_sign_in):
        sign_ins = [
            make_sign_in("a", 0, ip="198.51.100.1", correlation_id="c1"),
            make_sign_in("b", 5, ip="198.51.100.2", correlation_id="c2"),
        ]
        correlator.correlate(sign_ins)
        assert not any(s.session_flags.flagged for s in sign_ins)

    def test_sign_ins_without_correlation_id_are_excluded(self, correlator, make_sign_in):
        sign_ins = [
            make_sign_in("a", 0, ip="198.51.100.1"),
            make_sign_in("b", 5, ip="198.51.100.2"),
        ]
        groups = correlator.correlate(sign_ins)
        assert groups == {}
        assert not any(s.session_flags.flagged for s in sign_ins)

    def test_flags_are_not_cleared_by_a_second_pass(self, correlator, make_sign_in):
        sign_ins = [
            make_sign_in("a", 0, ip="198.51.100.1", correlation_id="c1"),
            make_sign_in("b", 5, ip="198.51.100.2", correlation_id="c1"),
        ]
        correlator.correlate(sign_ins)
        correlator.correlate(sign_ins[:1])
        assert sign_ins[0].session_flags.ip_changed
