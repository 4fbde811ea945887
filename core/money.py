"""
Money maths for orders and the ledger. Pure functions over Decimal, rounded half-up
to two places wherever an amount is stored.
"""
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings

from .exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
# Stored amounts are DecimalField(max_digits=12, decimal_places=2).
MAX_AMOUNT = Decimal('1e10')


def to_decimal(value, field='amount'):
    """Parse int/str/float/Decimal into Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        result = value
    else:
        if value is None or isinstance(value, bool):
            raise ValidationError(f'{field} is required', field=field)
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field} is not a valid number', field=field)
    if not result.is_finite():
        raise ValidationError(f'{field} is not a valid number', field=field)
    if abs(result) >= MAX_AMOUNT:
        raise ValidationError(f'{field} is too large', field=field)
    return result


def round2(value, field='amount'):
    try:
        return to_decimal(value, field).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f'{field} is not a valid number', field=field)


def line_total(unit_price, quantity):
    return round2(to_decimal(unit_price) * quantity)


def food_subtotal(lines):
    """lines: iterable of (unit_price, quantity)."""
    return round2(sum((line_total(price, qty) for price, qty in lines), ZERO))


def vat_amount(subtotal, rate=None):
    if rate is None:
        rate = settings.GOV_VAT
    return round2(to_decimal(subtotal) * to_decimal(rate))


def service_fee_for(order_type):
    """Flat service fee for non-delivery orders. Delivery orders pay a delivery fee instead."""
    fees = {
        'dine_in': settings.DINEIN_SERVICE_FEE,
        'takeaway': settings.TAKEAWAY_SERVICE_FEE,
    }
    return round2(fees.get(order_type, ZERO))


def order_total(subtotal, vat, tip, fee):
    return round2(to_decimal(subtotal) + to_decimal(vat) + to_decimal(tip) + to_decimal(fee))


def deposit_rates(requester_type):
    """Return (fee_rate, vat_rate) for a deposit. VAT applies to restaurants only."""
    if requester_type == 'courier':
        return to_decimal(settings.DELIVERY_DEPOSIT_FEE), ZERO
    return to_decimal(settings.RESTAURANT_DEPOSIT_FEE), to_decimal(settings.GOV_VAT)


def deposit_split(original, requester_type):
    """
    Split a gross deposit into (fee, vat, net).
    fee = round2(original * fee_rate)
    net = round2((original - fee) * (1 + vat_rate)) for restaurants, round2(original - fee) for couriers.
    """
    original = round2(original)
    fee_rate, vat_rate = deposit_rates(requester_type)
    fee = round2(original * fee_rate)
    after_fee = round2(original - fee)
    net = round2(after_fee * (1 + vat_rate))
    return fee, net - after_fee, net


def delivery_fee(base, per_km, distance_km):
    """Distance pricing: base + per_km * km, rounded up to a whole currency unit."""
    raw = to_decimal(base) + to_decimal(per_km) * to_decimal(distance_km)
    return Decimal(math.ceil(raw)).quantize(CENT)
