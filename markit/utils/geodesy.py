import math

from markit.schemas.geo import GeoLocation

EARTH_RADIUS_METERS = 6371000


# ----------------------------------------Geolocation Logic/Algorithm--------------------------------------------
def haversine(lat1, lon1, lat2, lon2):
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_meters(a: GeoLocation, b: GeoLocation) -> float:
    """Great-circle distance between two points, in meters."""
    return haversine(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within(point: GeoLocation, center: GeoLocation, radius: float) -> bool:
    return distance_meters(point, center) <= radius
