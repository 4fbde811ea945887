"""Order placement, customer reads, restaurant-side transitions and pricing. Function-based."""
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core import services
from core.delivery.utils import estimate_delivery_fees, service_fees
from core.models import Restaurant, Role
from core.permissions import admin_required, customer_required, manager_required
from core.utils import auth_required, domain_errors, order_to_dict, parse_json_body


@auth_required
@customer_required
@require_http_methods(['POST'])
@domain_errors
def place_order(request):
    """Create a Pending order and return the checkout URL."""
    data = parse_json_body(request)
    order, checkout_url = services.place_order(
        request.user,
        items=data.get('items'),
        order_type=data.get('order_type'),
        vehicle_class=data.get('vehicle_class'),
        destination=data.get('destination'),
        tip=data.get('tip', 0),
        delivery_fee=data.get('delivery_fee'),
        distance_km=data.get('distance_km'),
        description=data.get('description', ''),
        is_gift=bool(data.get('is_gift', False)),
        recipient_phone=data.get('recipient_phone', ''),
    )
    return JsonResponse({
        'order': order_to_dict(order, include_items=True),
        'checkout_url': checkout_url,
        'tx_ref': order.payment.tx_ref,
    }, status=201)


@auth_required
@customer_required
@require_http_methods(['GET'])
@domain_errors
def customer_order_list(request):
    orders = services.customer_orders(request.user)
    return JsonResponse({
        'results': [order_to_dict(o, include_items=True, include_handoff=True) for o in orders],
    })


@auth_required
@customer_required
@require_http_methods(['GET'])
@domain_errors
def customer_order_detail(request, pk):
    order = services.get_customer_order(request.user, pk)
    return JsonResponse(order_to_dict(order, include_items=True, include_handoff=True))


@require_http_methods(['POST'])
@domain_errors
def delivery_fee_estimate(request):
    """Fee per vehicle class from a restaurant to a destination."""
    data = parse_json_body(request)
    fees = estimate_delivery_fees(data.get('restaurant_id'), data.get('destination'))
    return JsonResponse({
        'fees': {
            vehicle: {
                'delivery_fee': str(quote['delivery_fee']),
                'distance_km': str(quote['distance_km']),
                'duration_s': quote['duration_s'],
            }
            for vehicle, quote in fees.items()
        },
    })


@require_http_methods(['GET'])
def service_fee_list(request):
    return JsonResponse({k: str(v) for k, v in service_fees().items()})


# --- Restaurant manager ---

@auth_required
@manager_required
@require_http_methods(['GET'])
@domain_errors
def restaurant_order_list(request):
    if request.user.role == Role.MANAGER:
        restaurant = services.manager_restaurant(request.user)
    else:
        restaurant_id = request.GET.get('restaurant_id')
        if not restaurant_id:
            return JsonResponse({'error': 'restaurant_id is required'}, status=400)
        restaurant = Restaurant.objects.filter(pk=restaurant_id).first()
        if restaurant is None:
            return JsonResponse({'error': 'Restaurant not found'}, status=404)
    orders = services.restaurant_orders(restaurant, status=request.GET.get('status'))
    return JsonResponse({
        'restaurant_id': restaurant.pk,
        'results': [order_to_dict(o, include_items=True) for o in orders],
    })


@auth_required
@manager_required
@require_http_methods(['POST'])
@domain_errors
def update_order_status(request, pk):
    data = parse_json_body(request)
    status = data.get('status')
    if not status:
        return JsonResponse({'error': 'status is required'}, status=400)
    order = services.update_order_status(pk, status, request.user)
    return JsonResponse({
        'message': f'Order status successfully updated to "{order.status}".',
        'order': order_to_dict(order),
    })


@auth_required
@manager_required
@require_http_methods(['POST'])
@domain_errors
def verify_pickup(request, pk):
    data = parse_json_body(request)
    code = str(data.get('code') or '').strip()
    if not code:
        return JsonResponse({'error': 'Verification code is required'}, status=400)
    order, entry = services.verify_pickup(pk, code, request.user)
    return JsonResponse({
        'message': f'Order {order.code} verified successfully.',
        'order': order_to_dict(order),
        'deposit_id': entry.pk,
    })


# --- Admin ---

@auth_required
@admin_required
@require_http_methods(['GET'])
@domain_errors
def admin_order_list(request):
    orders = services.admin_orders(request.GET.get('status', 'all'))
    return JsonResponse({'results': [order_to_dict(o) for o in orders]})
