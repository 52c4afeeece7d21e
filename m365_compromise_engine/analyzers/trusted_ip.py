"""
Trusted-IP Profiler — Per-address history built once per run from the full
sign-in history, plus the trusted ranges from named-location configuration.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..enrichment.cidr import CidrMatcher
from ..models import SignInFact

logger = logging.getLogger("m365_compromise_engine.analyzers.trusted_ip")


@dataclass
class IpHistory:
    total: int = 0
    mfa_success: int = 0
    compliant_device: int = 0
    domain_joined: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "mfa_success": self.mfa_success,
            "compliant_device": self.compliant_device,
            "domain_joined": self.domain_joined,
        }


@dataclass
class TrustedIpProfile:
    """Read-only once built."""
    addresses: dict[str, IpHistory] = field(default_factory=dict)
    trusted_ranges: list[str] = field(default_factory=list)
    min_mfa: int = 3
    min_compliant: int = 3
    matcher: CidrMatcher = field(default_factory=CidrMatcher)

    def history(self, ip: str) -> IpHistory:
        return self.addresses.get(ip, IpHistory())

    def trusted_range_for(self, ip: str) -> Optional[str]:
        return self.matcher.match(ip)

    def is_frequent_mfa(self, ip: str) -> bool:
        return self.history(ip).mfa_success >= self.min_mfa

    def is_frequent_compliant(self, ip: str) -> bool:
        return self.history(ip).compliant_device >= self.min_compliant

    def to_dict(self) -> dict:
        return {
            "addresses": {ip: h.to_dict() for ip, h in self.addresses.items()},
            "trusted_ranges": list(self.trusted_ranges),
            "min_mfa": self.min_mfa,
            "min_compliant": self.min_compliant,
        }


def trusted_ranges_from_named_locations(named_locations: Optional[Iterable[dict[str, Any]]]) -> list[str]:
    """Collect CIDR ranges from IP named locations marked trusted."""
    ranges = []
    for loc in named_locations or []:
        if not loc.get("isTrusted"):
            continue
        for entry in loc.get("ipRanges", []) or []:
            cidr = entry.get("cidrAddress") if isinstance(entry, dict) else entry
            if cidr:
                ranges.append(cidr)
    return ranges


class TrustedIpProfiler:
    """
    Builds and caches the TrustedIpProfile for one account.
    Call reset() to force a rebuild; the pipeline does so on every analyze().
    """

    name = "trusted_ip_profiler"

    def __init__(self, min_mfa: int = 3, min_compliant: int = 3):
        self.min_mfa = min_mfa
        self.min_compliant = min_compliant
        self._profile: Optional[TrustedIpProfile] = None
        self._lock = threading.Lock()

    @property
    def profile(self) -> Optional[TrustedIpProfile]:
        return self._profile

    def build(
        self,
        sign_ins: list[SignInFact],
        named_locations: Optional[list[dict[str, Any]]] = None,
    ) -> TrustedIpProfile:
        with self._lock:
            if self._profile is not None:
                return self._profile

            addresses: dict[str, IpHistory] = {}
            for s in sign_ins:
                if not s.ip_address:
                    continue
                history = addresses.setdefault(s.ip_address, IpHistory())
                history.total += 1
                if s.succeeded and s.auth_factors_completed >= 2:
                    history.mfa_success += 1
                if s.device.is_compliant:
                    history.compliant_device += 1
                if s.device.is_domain_joined:
                    history.domain_joined += 1

            if not named_locations:
                logger.info(f"[{self.name}] No named locations supplied; trusted-range indicator inactive")
            ranges = trusted_ranges_from_named_locations(named_locations)

            self._profile = TrustedIpProfile(
                addresses=addresses,
                trusted_ranges=ranges,
                min_mfa=self.min_mfa,
                min_compliant=self.min_compliant,
                matcher=CidrMatcher(ranges),
            )
            logger.info(
                f"[{self.name}] Profile built — {len(addresses)} addresses, "
                f"{len(self._profile.matcher)} trusted ranges"
            )
            return self._profile

    def reset(self):
        with self._lock:
            self._profile = None
