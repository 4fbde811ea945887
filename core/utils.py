"""
Shared helpers for API views: token auth, JSON body parsing, domain error translation
and serialization of orders and ledger entries (snake_case keys, Decimals as strings).
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from functools import wraps

from django.http import JsonResponse

from core.exceptions import DomainError, ValidationError

logger = logging.getLogger(__name__)


def _serialize_value(v):
    if v is None:
        return None
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    return v


def auth_required(view_func):
    """Decorator: set request.user from Authorization Bearer token (DRF Token only). Return 401 if invalid."""
    from rest_framework.authtoken.models import Token

    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header or not auth_header.startswith('Bearer '):
            return JsonResponse({'error': 'Authentication required'}, status=401)
        key = auth_header[7:].strip()
        try:
            token = Token.objects.select_related('user').get(key=key)
        except Token.DoesNotExist:
            return JsonResponse({'error': 'Invalid token'}, status=401)
        if not token.user.is_active:
            return JsonResponse({'error': 'Account disabled'}, status=401)
        request.user = token.user
        return view_func(request, *args, **kwargs)
    return wrapped


def domain_errors(view_func):
    """Decorator: turn a DomainError into a JSON error response with its status code."""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except DomainError as e:
            if e.status_code >= 500:
                logger.error('%s %s failed: %s', request.method, request.path, e.message)
            return JsonResponse(e.to_dict(), status=e.status_code)
    return wrapped


def parse_json_body(request):
    """Return the request body as a dict; empty body -> {}."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError('Invalid JSON body')
    if not isinstance(data, dict):
        raise ValidationError('JSON body must be an object')
    return data


def order_to_dict(o, include_items=False, include_handoff=False):
    d = {
        'id': o.id,
        'code': o.code,
        'customer_id': o.customer_id,
        'restaurant_id': o.restaurant_id,
        'restaurant_name': o.restaurant_name,
        'restaurant_location': {
            'lat': _serialize_value(o.restaurant_lat),
            'lng': _serialize_value(o.restaurant_lon),
        },
        'courier_id': o.courier_id,
        'order_type': o.order_type,
        'vehicle_class': o.vehicle_class or None,
        'destination': None,
        'distance_km': _serialize_value(o.distance_km),
        'status': o.status,
        'is_gift': o.is_gift,
        'food_total': str(o.food_total),
        'vat_total': str(o.vat_total),
        'delivery_fee': str(o.delivery_fee),
        'service_fee': str(o.service_fee),
        'tip': str(o.tip),
        'total': str(o.total),
        'description': o.description,
        'created_at': _serialize_value(o.created_at),
        'updated_at': _serialize_value(o.updated_at),
    }
    if o.destination_lat is not None:
        d['destination'] = {
            'lat': str(o.destination_lat),
            'lng': str(o.destination_lon),
            'address': o.destination_address,
        }
    if include_handoff:
        d['handoff_code'] = o.handoff_code or None
    if include_items:
        d['items'] = [
            {
                'id': i.id,
                'food_id': i.food_id,
                'name': i.name,
                'quantity': i.quantity,
                'price': str(i.price),
                'total': str(i.total),
            }
            for i in o.items.all()
        ]
    return d


def ledger_entry_to_dict(e, running_balance=None):
    d = {
        'id': e.id,
        'requester_type': e.requester_type,
        'restaurant_id': e.restaurant_id,
        'courier_id': e.courier_id,
        'order_id': e.order_id,
        'type': e.type,
        'status': e.status,
        'original_amount': str(e.original_amount),
        'fee': str(e.fee),
        'vat_total': str(e.vat_total),
        'net_amount': str(e.net_amount),
        'currency': e.currency,
        'note': e.note,
        'reference': e.reference,
        'bank_code': e.bank_code or None,
        'created_at': _serialize_value(e.created_at),
    }
    if running_balance is not None:
        d['running_balance'] = str(running_balance)
    return d
