"""
Impossible-Travel Detector — Flags the later of two consecutive sign-ins
whose great-circle distance implies a speed above the configured limit.
"""

from __future__ import annotations

import logging

from ..enrichment.geo import GeoCache, haversine_km
from ..models import SignInFact, TravelEvidence

logger = logging.getLogger("m365_compromise_engine.analyzers.travel")

DEFAULT_SPEED_LIMIT_KMH = 1000.0


class ImpossibleTravelDetector:
    name = "impossible_travel"

    def __init__(self, geo_cache: GeoCache, speed_limit_kmh: float = DEFAULT_SPEED_LIMIT_KMH):
        self.geo = geo_cache
        self.speed_limit_kmh = speed_limit_kmh

    def detect(self, sign_ins: list[SignInFact]) -> list[SignInFact]:
        """
        Annotate sign-ins in place and return the newly flagged ones.
        Only the later event of a pair is ever flagged.
        """
        timed = []
        for s in sign_ins:
            if s.timestamp is None:
                logger.warning(f"[{self.name}] Sign-in {s.id} has no usable timestamp, skipped")
                continue
            timed.append(s)
            self.geo.prime(s.ip_address, s.location)

        ordered = sorted(timed, key=lambda s: s.timestamp)
        flagged = []

        for previous, current in zip(ordered, ordered[1:]):
            if not previous.ip_address or not current.ip_address:
                continue
            if previous.ip_address == current.ip_address:
                continue

            origin = self.geo.lookup(previous.ip_address)
            destination = self.geo.lookup(current.ip_address)
            if origin is None or destination is None:
                logger.info(
                    f"[{self.name}] No coordinates for {previous.ip_address} -> "
                    f"{current.ip_address}; pair skipped"
                )
                continue

            hours = (current.timestamp - previous.timestamp).total_seconds() / 3600
            if hours <= 0:
                logger.debug(f"[{self.name}] Non-positive interval between {previous.id} and {current.id}")
                continue

            distance = haversine_km(
                origin.latitude, origin.longitude,
                destination.latitude, destination.longitude,
            )
            speed = distance / hours
            if speed <= self.speed_limit_kmh or current.travel is not None:
                continue

            current.travel = TravelEvidence(
                previous_sign_in_id=previous.id,
                origin_ip=previous.ip_address,
                destination_ip=current.ip_address,
                origin=origin,
                destination=destination,
                distance_km=distance,
                elapsed_hours=hours,
                speed_kmh=speed,
            )
            flagged.append(current)
            logger.info(
                f"[{self.name}] {origin.label()} -> {destination.label()}: "
                f"{distance:.0f} km in {hours:.2f} h ({speed:.0f} km/h)"
            )

        return flagged
