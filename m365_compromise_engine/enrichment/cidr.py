"""
CIDR matcher — Tests whether an address falls inside a named-location range.

IPv4 uses 32-bit mask arithmetic; IPv6 compares whole prefix bytes and masks
the trailing partial byte. Address and range must share an IP version.
Malformed ranges are skipped with a warning and never match.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger("m365_compromise_engine.enrichment.cidr")


@dataclass(frozen=True)
class ParsedRange:
    cidr: str
    version: int
    network: bytes
    prefix: int


def parse_cidr(cidr: str) -> Optional[ParsedRange]:
    """Parse "a.b.c.d/n" or an IPv6 equivalent. Returns None if malformed."""
    if not cidr or not isinstance(cidr, str):
        return None
    text = cidr.strip()
    base, sep, prefix_text = text.partition("/")
    try:
        network = ipaddress.ip_address(base.strip())
    except ValueError:
        return None

    max_prefix = 32 if network.version == 4 else 128
    if not sep:
        prefix = max_prefix
    else:
        try:
            prefix = int(prefix_text.strip())
        except ValueError:
            return None
        if not 0 <= prefix <= max_prefix:
            return None
    return ParsedRange(cidr=text, version=network.version, network=network.packed, prefix=prefix)


def _ipv4_match(address: bytes, rng: ParsedRange) -> bool:
    mask = (0xFFFFFFFF << (32 - rng.prefix)) & 0xFFFFFFFF
    return (int.from_bytes(address, "big") & mask) == (int.from_bytes(rng.network, "big") & mask)


def _ipv6_match(address: bytes, rng: ParsedRange) -> bool:
    full_bytes, remaining_bits = divmod(rng.prefix, 8)
    if address[:full_bytes] != rng.network[:full_bytes]:
        return False
    if remaining_bits == 0:
        return True
    mask = (0xFF << (8 - remaining_bits)) & 0xFF
    return (address[full_bytes] & mask) == (rng.network[full_bytes] & mask)


def _match_parsed(address: str, rng: ParsedRange) -> bool:
    try:
        ip = ipaddress.ip_address(address.strip())
    except (ValueError, AttributeError):
        return False
    if ip.version != rng.version:
        return False
    if ip.version == 4:
        return _ipv4_match(ip.packed, rng)
    return _ipv6_match(ip.packed, rng)


def ip_in_cidr(address: str, cidr: str) -> bool:
    """Pure check of a single address against a single range."""
    rng = parse_cidr(cidr)
    if rng is None:
        logger.warning(f"Skipping malformed CIDR range: {cidr!r}")
        return False
    return _match_parsed(address, rng)


class CidrMatcher:
    """A set of ranges parsed once, matched many times."""

    def __init__(self, ranges: Iterable[str] = ()):
        self.ranges: list[ParsedRange] = []
        self.skipped: list[str] = []
        for cidr in ranges:
            parsed = parse_cidr(cidr)
            if parsed is None:
                logger.warning(f"Skipping malformed CIDR range: {cidr!r}")
                self.skipped.append(str(cidr))
                continue
            self.ranges.append(parsed)

    def __len__(self) -> int:
        return len(self.ranges)

    def match(self, address: str) -> Optional[str]:
        """Return the first range containing the address, if any."""
        if not address:
            return None
        for rng in self.ranges:
            if _match_parsed(address, rng):
                return rng.cidr
        return None
