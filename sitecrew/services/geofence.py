"""
Geofence validation service.
Uses Haversine formula to calculate distance between points.
"""
import math
from dataclasses import dataclass, asdict
from typing import Optional, Tuple

from ..config import settings


# Earth radius in meters
EARTH_RADIUS_M = 6371000


class InvalidCoordinates(ValueError):
    pass


@dataclass(frozen=True)
class Geofence:
    latitude: float
    longitude: float
    radius_m: float
    strict_mode: bool = True
    allowed_variance_m: float = 0.0

    def to_dict(self) -> dict:
        return {
            "center": {"latitude": self.latitude, "longitude": self.longitude},
            "radius": self.radius_m,
            "strict_mode": self.strict_mode,
            "allowed_variance": self.allowed_variance_m,
        }


@dataclass
class GeofenceResult:
    inside_geofence: bool
    distance_m: float
    is_valid: bool
    allowed_radius_m: float
    strict_mode: bool
    allowed_variance_m: float
    message: str
    accuracy_warning: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    # Convert to radians
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def validate_coordinates(latitude, longitude) -> Tuple[float, float]:
    """Parse a latitude/longitude pair, raising InvalidCoordinates when unusable."""
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        raise InvalidCoordinates("Latitude and longitude must be numbers")
    if math.isnan(lat) or math.isnan(lng):
        raise InvalidCoordinates("Latitude and longitude must be numbers")
    if not -90 <= lat <= 90:
        raise InvalidCoordinates("Latitude must be between -90 and 90")
    if not -180 <= lng <= 180:
        raise InvalidCoordinates("Longitude must be between -180 and 180")
    return lat, lng


def _clamp_variance(value: Optional[float]) -> float:
    if value is None:
        return float(settings.geofence_allowed_variance_m)
    try:
        variance = float(value)
    except (TypeError, ValueError):
        return float(settings.geofence_allowed_variance_m)
    if math.isnan(variance):
        return float(settings.geofence_allowed_variance_m)
    return min(max(variance, 0.0), float(settings.geofence_allowed_variance_max_m))


def project_geofence(project) -> Geofence:
    """
    Resolve the geofence configured on a project.
    Falls back to the legacy project location and the configured defaults.
    """
    lat = project.geofence_lat if project.geofence_lat is not None else project.latitude
    lng = project.geofence_lng if project.geofence_lng is not None else project.longitude
    radius = project.geofence_radius_m
    if radius is None or radius <= 0:
        radius = settings.geofence_radius_m_default
    return Geofence(
        latitude=float(lat or 0),
        longitude=float(lng or 0),
        radius_m=float(radius),
        strict_mode=project.geofence_strict_mode is not False,
        allowed_variance_m=_clamp_variance(project.geofence_allowed_variance_m),
    )


def inside_geofence(latitude: float, longitude: float, geofence: Geofence) -> Tuple[bool, float]:
    """Return (is_inside, distance_m) using radius padded by the allowed variance."""
    distance = haversine_distance(latitude, longitude, geofence.latitude, geofence.longitude)
    return distance <= geofence.radius_m + geofence.allowed_variance_m, distance


def validate_geofence(
    latitude: float,
    longitude: float,
    geofence: Geofence,
    accuracy_m: Optional[float] = None,
) -> GeofenceResult:
    """
    Check a reported position against a project geofence.

    Args:
        latitude: Point latitude
        longitude: Point longitude
        geofence: Geofence to check against
        accuracy_m: GPS accuracy in meters (optional)

    Returns:
        GeofenceResult. inside_geofence is the raw classification,
        is_valid tells whether the action may proceed.
    """
    inside, distance = inside_geofence(latitude, longitude, geofence)
    allowed_radius = geofence.radius_m + geofence.allowed_variance_m

    if inside:
        is_valid = True
        message = f"Inside project geofence ({distance:.0f}m from site center)"
    elif not geofence.strict_mode:
        is_valid = True
        message = (
            f"Outside project geofence ({distance:.0f}m from site center, "
            f"allowed {allowed_radius:.0f}m) - accepted, strict mode is off"
        )
    else:
        is_valid = False
        message = (
            f"You are {distance:.0f}m from the site. "
            f"Please move within {allowed_radius:.0f}m of the project location"
        )

    accuracy_warning = None
    if accuracy_m is not None and accuracy_m > settings.gps_accuracy_warning_m:
        accuracy_warning = (
            f"GPS accuracy is poor ({accuracy_m:.0f}m). Location validation may be unreliable."
        )
        # Very poor accuracy: widen the radius by the reported accuracy
        if accuracy_m > settings.gps_accuracy_lenient_m and not is_valid:
            if distance <= allowed_radius + accuracy_m:
                is_valid = True
                message = f"Location validated with GPS accuracy consideration ({accuracy_m:.0f}m accuracy)"

    return GeofenceResult(
        inside_geofence=inside,
        distance_m=round(distance, 2),
        is_valid=is_valid,
        allowed_radius_m=allowed_radius,
        strict_mode=geofence.strict_mode,
        allowed_variance_m=geofence.allowed_variance_m,
        message=message,
        accuracy_warning=accuracy_warning,
    )
