"""
Geocoding of voters, parliaments and localities: job state, background runner and provider client
"""
from .geocoder import NominatimGeocoder
from .job_manager import GeocodingJobManager
from .rate_limiter import RateLimiter
from .runner import GeocodingRunner, _running_tasks
from .service import GeocodingService
from .targets import GeocodingTarget, ReferenceGeocodingTarget, build_address, build_place_address

__all__ = [
    "NominatimGeocoder",
    "GeocodingJobManager",
    "RateLimiter",
    "GeocodingRunner",
    "GeocodingService",
    "GeocodingTarget",
    "ReferenceGeocodingTarget",
    "build_address",
    "build_place_address",
    "_running_tasks",
]
