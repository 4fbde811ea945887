"""Shared constants for orders: status flow, item limits, verification and order codes."""
import secrets
import string

from django.utils import timezone

MAX_ORDER_ITEMS = 5
MIN_ITEM_QUANTITY = 1
MAX_ITEM_QUANTITY = 1000

VERIFICATION_CODE_LENGTH = 6

# Allowed target statuses per current status. Terminal statuses map to nothing.
ORDER_STATUS_FLOW = {
    'pending': ('preparing', 'cooked', 'cancelled'),
    'preparing': ('cooked', 'cancelled'),
    'cooked': ('delivering', 'cancelled', 'completed'),
    'delivering': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
}

TERMINAL_ORDER_STATUSES = frozenset({'completed', 'cancelled'})

# Orders that can hold a courier binding for live tracking.
TRACKABLE_ORDER_STATUSES = ('cooked', 'delivering')


def generate_verification_code():
    """Six-digit numeric code, never starting with 0."""
    return str(100000 + secrets.randbelow(900000))


def generate_order_code(now=None):
    """
    Human-readable order code: ORD-<yy><month letter>-<6 hex>, e.g. ORD-25A-8FA1C2 for January 2025.
    Uniqueness is enforced by the database; callers retry on collision.
    """
    now = now or timezone.now()
    date_part = f'{now.year % 100:02d}{string.ascii_uppercase[now.month - 1]}'
    return f'ORD-{date_part}-{secrets.token_hex(3).upper()}'


def is_valid_coordinate(lat, lng):
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180
