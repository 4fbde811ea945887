"""
Route distance providers used for delivery pricing: OSRM over HTTP, or a straight-line
haversine estimate when no routing service is wanted (tests, offline development).
"""
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict

from django.conf import settings

from core.exceptions import ExternalProviderError

from .utils import haversine_km

logger = logging.getLogger(__name__)


class BaseRouteProvider:
    """Base interface for route_distance."""

    def route_distance(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        vehicle_class: str,
    ) -> Dict[str, Any]:
        """Return dict with distance_m and duration_s (duration may be None)."""
        raise NotImplementedError


class OsrmRouteProvider(BaseRouteProvider):
    """OSRM /route service. Bicycles are routed with the bike profile, everything else by car."""

    def __init__(self, base_url=None, timeout=None):
        self.base_url = (base_url or settings.OSRM_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS

    def route_distance(self, origin_lat, origin_lon, dest_lat, dest_lon, vehicle_class):
        mode = 'bike' if vehicle_class == 'bicycle' else 'driving'
        # OSRM takes lng,lat pairs.
        coords = f'{origin_lon},{origin_lat};{dest_lon},{dest_lat}'
        url = f'{self.base_url}/route/v1/{mode}/{coords}?overview=false'
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode('utf-8'))
        except (urllib.error.URLError, TimeoutError, OSError, ValueError) as e:
            logger.warning('OSRM route lookup failed: %s', e)
            raise ExternalProviderError('Failed to fetch route')
        routes = data.get('routes') or []
        distance = routes[0].get('distance') if routes else None
        if not distance or distance <= 0:
            raise ExternalProviderError('Failed to calculate delivery distance')
        return {'distance_m': distance, 'duration_s': routes[0].get('duration')}


class HaversineRouteProvider(BaseRouteProvider):
    """Great-circle distance; no network."""

    def route_distance(self, origin_lat, origin_lon, dest_lat, dest_lon, vehicle_class):
        km = haversine_km(float(origin_lat), float(origin_lon), float(dest_lat), float(dest_lon))
        return {'distance_m': km * 1000, 'duration_s': None}


def get_route_provider(name=None) -> BaseRouteProvider:
    """Return provider instance for 'osrm' or 'haversine' (default from settings.ROUTING_PROVIDER)."""
    name = (name or settings.ROUTING_PROVIDER or 'osrm').lower()
    if name == 'haversine':
        return HaversineRouteProvider()
    if name == 'osrm':
        return OsrmRouteProvider()
    raise ValueError(f'Unknown routing provider: {name}')
