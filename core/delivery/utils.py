"""
Haversine distance and distance-based delivery pricing.
"""
import math
from decimal import Decimal
from typing import Optional

from django.conf import settings

from core.constants import is_valid_coordinate
from core.exceptions import NotFound, ValidationError
from core.money import delivery_fee, round2, service_fee_for

EARTH_RADIUS_KM = 6371


def haversine_km(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Return great-circle distance in km between two (lat, lon) points.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def rate_for(vehicle_class: str) -> dict:
    rates = settings.DELIVERY_RATES.get(vehicle_class)
    if rates is None:
        raise ValidationError(
            f'Invalid delivery vehicle: {vehicle_class}. Allowed types: {", ".join(settings.DELIVERY_RATES)}'
        )
    return rates


def price_distance(vehicle_class: str, distance_m: float, duration_s: Optional[float] = None) -> dict:
    """Fee for one vehicle class over a routed distance: ceil(base + per_km * km)."""
    rates = rate_for(vehicle_class)
    km = Decimal(str(distance_m)) / 1000
    return {
        'vehicle_class': vehicle_class,
        'delivery_fee': delivery_fee(rates['base'], rates['per_km'], km),
        'distance_km': round2(km),
        'distance_m': distance_m,
        'duration_s': duration_s,
    }


def estimate_delivery_fees(restaurant_id, destination, provider=None):
    """
    Price a delivery from a restaurant to destination {'lat', 'lng'} for every vehicle class.
    One route lookup per vehicle class, since bicycles route differently.
    """
    from core.models import Restaurant

    from .providers import get_route_provider

    destination = destination or {}
    lat, lng = destination.get('lat'), destination.get('lng')
    if not is_valid_coordinate(lat, lng):
        raise ValidationError('Destination coordinates are required')
    restaurant = Restaurant.objects.filter(pk=restaurant_id).first()
    if restaurant is None:
        raise NotFound('Restaurant not found', restaurant_id=restaurant_id)
    provider = provider or get_route_provider()
    fees = {}
    for vehicle_class in settings.DELIVERY_RATES:
        route = provider.route_distance(
            restaurant.latitude, restaurant.longitude, float(lat), float(lng), vehicle_class
        )
        fees[vehicle_class] = price_distance(vehicle_class, route['distance_m'], route.get('duration_s'))
    return fees


def service_fees() -> dict:
    return {
        'dine_in': service_fee_for('dine_in'),
        'takeaway': service_fee_for('takeaway'),
    }
