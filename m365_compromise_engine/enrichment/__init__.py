from .cidr import CidrMatcher, ip_in_cidr, parse_cidr
from .geo import UNAVAILABLE, GeoCache, IpGeoLocator, haversine_km
from .reputation import ReputationCache, ReputationClient

__all__ = [
    "CidrMatcher",
    "ip_in_cidr",
    "parse_cidr",
    "UNAVAILABLE",
    "GeoCache",
    "IpGeoLocator",
    "haversine_km",
    "ReputationCache",
    "ReputationClient",
]
