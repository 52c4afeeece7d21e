"""
Session Correlator — Groups sign-ins by correlation id and raises
group-level anomaly flags (IP, country, device changed) on every member.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..models import SessionFlags, SignInFact

logger = logging.getLogger("m365_compromise_engine.analyzers.session")


@dataclass
class SessionGroup:
    """Sign-ins sharing one correlation id."""
    correlation_id: str
    members: list[SignInFact] = field(default_factory=list)
    flags: SessionFlags = field(default_factory=SessionFlags)

    @property
    def distinct_ips(self) -> set[str]:
        return {m.ip_address for m in self.members if m.ip_address}

    @property
    def distinct_countries(self) -> set[str]:
        return {m.country for m in self.members if m.country}

    @property
    def distinct_devices(self) -> set[str]:
        return {m.device.device_id for m in self.members if m.device.device_id}

    def to_dict(self) -> dict:
        return {
            "correlation_id": self.correlation_id,
            "sign_in_ids": [m.id for m in self.members],
            "flags": self.flags.to_dict(),
            "distinct_ips": sorted(self.distinct_ips),
            "distinct_countries": sorted(self.distinct_countries),
        }


class SessionCorrelator:
    """Computes session flags once per group and propagates them to members."""

    name = "session_correlator"

    def correlate(self, sign_ins: list[SignInFact]) -> dict[str, SessionGroup]:
        groups: dict[str, SessionGroup] = {}
        for sign_in in sign_ins:
            if not sign_in.correlation_id:
                continue
            group = groups.setdefault(sign_in.correlation_id, SessionGroup(sign_in.correlation_id))
            group.members.append(sign_in)

        flagged = 0
        for group in groups.values():
            if len(group.members) < 2:
                continue
            group.flags = SessionFlags(
                ip_changed=len(group.distinct_ips) > 1,
                country_changed=len(group.distinct_countries) > 1,
                device_changed=len(group.distinct_devices) > 1,
            )
            if not group.flags.flagged:
                continue
            flagged += 1
            for member in group.members:
                member.session_flags.raise_from(group.flags)

        logger.info(
            f"[{self.name}] {len(groups)} sessions correlated — {flagged} flagged"
        )
        return groups
