"""Courier API: claimable orders, accept, own orders and history, delivery verification."""
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core import services
from core.assignment import claim_details, claim_order
from core.permissions import courier_required
from core.utils import auth_required, domain_errors, order_to_dict, parse_json_body


@auth_required
@courier_required
@require_http_methods(['GET'])
@domain_errors
def available_order_list(request):
    orders = services.available_orders(request.user)
    return JsonResponse({'results': [order_to_dict(o) for o in orders]})


@auth_required
@courier_required
@require_http_methods(['GET'])
def available_order_count(request):
    return JsonResponse({'count': services.available_order_count(request.user)})


@auth_required
@courier_required
@require_http_methods(['POST'])
@domain_errors
def accept_order(request, pk):
    order = claim_order(request.user, pk)
    return JsonResponse({
        'message': f'Order {order.code} accepted.',
        'data': claim_details(order),
    })


@auth_required
@courier_required
@require_http_methods(['GET'])
@domain_errors
def my_order_list(request):
    orders = services.courier_orders(request.user, status=request.GET.get('status'))
    return JsonResponse({'results': [order_to_dict(o) for o in orders]})


@auth_required
@courier_required
@require_http_methods(['GET'])
def delivery_history(request):
    orders = services.courier_history(request.user)
    return JsonResponse({'results': [order_to_dict(o) for o in orders]})


@auth_required
@courier_required
@require_http_methods(['POST'])
@domain_errors
def verify_delivery(request, pk):
    data = parse_json_body(request)
    code = str(data.get('code') or '').strip()
    if not code:
        return JsonResponse({'error': 'Verification code is required'}, status=400)
    order, entry = services.verify_delivery(pk, code, request.user)
    return JsonResponse({
        'message': 'Order delivery verified successfully and balance updated.',
        'order': order_to_dict(order),
        'delivery_earnings': str(order.delivery_fee),
        'deposit_id': entry.pk if entry else None,
    })
