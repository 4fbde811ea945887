"""
Courier claim protocol: at most one courier per order and one active order per courier.

The courier row and the order row are both locked inside one transaction, and the
partial unique index on Order.courier backs the rule up on databases without row locks.
"""
import logging

from django.db import IntegrityError, transaction

from .constants import TERMINAL_ORDER_STATUSES, generate_verification_code
from .exceptions import (
    AlreadyClaimed,
    CourierAlreadyActive,
    NotDeliverable,
    NotFound,
    NotReady,
    PermissionDenied,
    VehicleMismatch,
)
from .models import Order, OrderStatus, OrderType, Role, User

logger = logging.getLogger(__name__)


def active_order_for(courier):
    return (
        Order.objects.filter(courier=courier)
        .exclude(status__in=TERMINAL_ORDER_STATUSES)
        .order_by('-updated_at')
        .first()
    )


def claim_order(courier, order_id):
    """
    Bind the courier to a Cooked delivery order and issue its pickup code.
    Raises CourierAlreadyActive, NotFound, AlreadyClaimed, NotReady, NotDeliverable or VehicleMismatch.
    """
    if courier.role != Role.COURIER:
        raise PermissionDenied('Only couriers can accept orders')
    try:
        with transaction.atomic():
            # Serializes claims by the same courier.
            User.objects.select_for_update().filter(pk=courier.pk).first()

            existing = active_order_for(courier)
            if existing is not None:
                raise CourierAlreadyActive(order_id=existing.pk, status=existing.status)

            order = (
                Order.objects.visible()
                .select_for_update(of=('self',))
                .filter(pk=order_id)
                .first()
            )
            if order is None:
                raise NotFound('Order not found', order_id=order_id)
            if order.courier_id is not None:
                raise AlreadyClaimed(order_id=order.pk)
            if order.status != OrderStatus.COOKED:
                raise NotReady(order_id=order.pk, status=order.status)
            if order.order_type != OrderType.DELIVERY:
                raise NotDeliverable(order_id=order.pk, order_type=order.order_type)
            if order.vehicle_class != courier.vehicle_class:
                raise VehicleMismatch(required=order.vehicle_class, vehicle_class=courier.vehicle_class)

            order.pickup_code = generate_verification_code()
            order.courier = courier
            order.save(update_fields=['courier', 'pickup_code', 'updated_at'])
            transaction.on_commit(lambda: _after_claim(order, courier))
    except IntegrityError:
        # The partial unique index caught a concurrent claim by the same courier.
        existing = active_order_for(courier)
        raise CourierAlreadyActive(
            order_id=existing.pk if existing else None,
            status=existing.status if existing else None,
        )
    logger.info('Order %s accepted by courier %s', order.code, courier.pk)
    return order


def _after_claim(order, courier):
    from core.apps import get_presence_registry
    from .order_notify import notify_customer, request_location_update

    registry = get_presence_registry()
    registry.bind_delivery(courier.pk, order.pk, order.customer_id)
    notify_customer(order.customer_id, 'orderAccepted', {
        'orderId': order.pk,
        'orderCode': order.code,
        'deliveryPersonId': courier.pk,
        'message': f'Your order {order.code} has been accepted for delivery!',
    }, registry=registry)
    request_location_update([courier.pk], 'orderAccepted', registry=registry)


def claim_details(order):
    """What the courier needs after a successful claim."""
    return {
        'orderId': order.pk,
        'orderCode': order.code,
        'status': order.status,
        'restaurantName': order.restaurant_name,
        'restaurantLocation': {'lat': order.restaurant_lat, 'lng': order.restaurant_lon},
        'deliverLocation': {
            'lat': order.destination_lat,
            'lng': order.destination_lon,
            'address': order.destination_address,
        },
        'deliveryFee': order.delivery_fee,
        'tip': order.tip,
        'distanceKm': order.distance_km,
        'description': order.description,
        'pickUpVerification': order.pickup_code,
    }
