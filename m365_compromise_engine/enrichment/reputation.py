"""
IP reputation lookup — 0-100 abuse confidence score per address.

ReputationClient talks to an AbuseIPDB-compatible `check` endpoint.
ReputationCache memoizes scores for the run and stores an UNAVAILABLE
sentinel for failed or skipped lookups, so a dead endpoint costs one
timeout per address and no retries.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from typing import Optional, Union

import httpx

from ..config import REPUTATION_LOOKUP_URL, LookupConfig
from .geo import UNAVAILABLE, _Unavailable

logger = logging.getLogger("m365_compromise_engine.enrichment.reputation")


class ReputationClient:
    """Queries the abuse confidence score for a single public address."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 5.0,
        max_age_days: int = 90,
        client: Optional[httpx.Client] = None,
        url: str = REPUTATION_LOOKUP_URL,
    ):
        self.url = url
        self.max_age_days = max_age_days
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=timeout),
            headers={"Key": api_key, "Accept": "application/json"},
        )
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: LookupConfig) -> Optional["ReputationClient"]:
        if not config.reputation_enabled:
            return None
        key = config.resolve_reputation_key()
        if not key:
            logger.info("No reputation API key configured; reputation indicators disabled")
            return None
        return cls(
            api_key=key,
            timeout=config.reputation_timeout_seconds,
            max_age_days=config.reputation_max_age_days,
        )

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self):
        if self._owns_client:
            self._client.close()

    def score(self, ip: str) -> Optional[int]:
        try:
            response = self._client.get(
                self.url,
                params={"ipAddress": ip, "maxAgeInDays": str(self.max_age_days)},
            )
            response.raise_for_status()
            data = response.json().get("data", {})
            value = data.get("abuseConfidenceScore")
            return int(value) if value is not None else None
        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning(f"Reputation lookup failed for {ip}: {e}")
            return None


class ReputationCache:
    """Run-scoped, thread-safe IP -> reputation score memo."""

    def __init__(self, client: Optional[ReputationClient] = None):
        self.client = client
        self._entries: dict[str, Union[int, _Unavailable]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def prime(self, ip: str, score: Optional[int]):
        if ip and score is not None:
            with self._lock:
                self._entries.setdefault(ip, int(score))

    def lookup(self, ip: str) -> Optional[int]:
        if not ip:
            return None
        with self._lock:
            cached = self._entries.get(ip)
        if cached is not None:
            return None if cached is UNAVAILABLE else cached

        score = None
        if _is_public(ip) and self.client is not None:
            score = self.client.score(ip)
        entry = score if score is not None else UNAVAILABLE
        with self._lock:
            stored = self._entries.setdefault(ip, entry)
        return None if stored is UNAVAILABLE else stored

    def clear(self):
        with self._lock:
            self._entries.clear()


def _is_public(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        logger.warning(f"Unparseable address skipped for reputation lookup: {ip!r}")
        return False
