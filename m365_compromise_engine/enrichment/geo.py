"""
Geo Cache & Distance Calculator.

GeoCache memoizes IP -> Location for one run. Locations already present on
sign-in records are primed into the cache; anything else is resolved lazily
through IpGeoLocator. A failed lookup is cached as unavailable and is never
retried within the run.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Optional, Union

import httpx

from ..config import GEO_LOOKUP_URL
from ..models import Location

logger = logging.getLogger("m365_compromise_engine.enrichment.geo")

EARTH_RADIUS_KM = 6371.0


class _Unavailable:
    """Cache sentinel for addresses whose lookup failed."""

    def __repr__(self):
        return "UNAVAILABLE"


UNAVAILABLE = _Unavailable()


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))
    return EARTH_RADIUS_KM * c


class IpGeoLocator:
    """
    Resolves an IP address to a Location via the ip-api.com JSON endpoint.
    Every request carries a bounded timeout; failures return None.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
        url_template: str = GEO_LOOKUP_URL,
    ):
        self.url_template = url_template
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=timeout))
        self._owns_client = client is None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self):
        if self._owns_client:
            self._client.close()

    def locate(self, ip: str) -> Optional[Location]:
        url = self.url_template.format(ip=ip)
        try:
            response = self._client.get(
                url,
                params={"fields": "status,message,country,countryCode,regionName,city,lat,lon"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {ip}: {e}")
            return None

        if data.get("status") != "success":
            logger.info(f"Geolocation unavailable for {ip}: {data.get('message', 'no result')}")
            return None

        return Location(
            city=data.get("city", "") or "",
            state=data.get("regionName", "") or "",
            country=data.get("countryCode", "") or data.get("country", "") or "",
            latitude=data.get("lat"),
            longitude=data.get("lon"),
        )


class GeoCache:
    """Run-scoped, thread-safe IP -> Location memo."""

    def __init__(self, locator: Optional[IpGeoLocator] = None):
        self.locator = locator
        self._entries: dict[str, Union[Location, _Unavailable]] = {}
        self._lock = threading.Lock()
        self.lookups = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ip: str) -> bool:
        return ip in self._entries

    def prime(self, ip: str, location: Optional[Location]):
        """Seed the cache with a location already known from the sign-in record."""
        if not ip or location is None or not location.has_coordinates:
            return
        with self._lock:
            self._entries.setdefault(ip, location)

    def lookup(self, ip: str) -> Optional[Location]:
        """Return coordinates-bearing Location for ip, or None if unavailable."""
        if not ip:
            return None
        with self._lock:
            cached = self._entries.get(ip)
        if cached is not None:
            return None if cached is UNAVAILABLE else cached

        location = None
        if self.locator is not None:
            self.lookups += 1
            location = self.locator.locate(ip)
        else:
            logger.info(f"No geolocation source configured; {ip} left unresolved")

        entry = location if location is not None and location.has_coordinates else UNAVAILABLE
        with self._lock:
            # First writer wins if two threads raced on the same key
            stored = self._entries.setdefault(ip, entry)
        return None if stored is UNAVAILABLE else stored

    def clear(self):
        with self._lock:
            self._entries.clear()
