"""
Order lifecycle: computing and placing orders, webhook payment confirmation,
restaurant status updates, pickup and delivery verification, and order read models.
Views and the websocket consumer call these so the rules stay in one place.
"""
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from . import ledger
from .constants import (
    MAX_ORDER_ITEMS,
    MAX_ITEM_QUANTITY,
    MIN_ITEM_QUANTITY,
    generate_order_code,
    generate_verification_code,
    is_valid_coordinate,
)
from .exceptions import (
    Conflict,
    ExternalProviderError,
    InconsistentRestaurant,
    InvalidTransition,
    InvalidVerificationCode,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from .models import (
    Food,
    Order,
    OrderItem,
    OrderPayment,
    OrderStatus,
    OrderType,
    PaymentStatus,
    Role,
    VehicleClass,
)
from .money import ZERO, food_subtotal, line_total, order_total, round2, service_fee_for, to_decimal, vat_amount

logger = logging.getLogger(__name__)

ORDER_CODE_ATTEMPTS = 5
COURIER_ORDER_STATUSES = (OrderStatus.COOKED, OrderStatus.DELIVERING, OrderStatus.COMPLETED)


@dataclass
class OrderLine:
    food: Food
    name: str
    quantity: int
    price: Decimal
    total: Decimal


@dataclass
class ComputedOrder:
    """A validated, priced order that has not been saved yet."""
    restaurant: object
    lines: List[OrderLine]
    order_type: str
    food_total: Decimal
    vat_total: Decimal
    tip: Decimal
    delivery_fee: Decimal = ZERO
    service_fee: Decimal = ZERO
    total: Decimal = ZERO
    vehicle_class: str = ''
    destination_lat: Optional[Decimal] = None
    destination_lon: Optional[Decimal] = None
    destination_address: str = ''
    distance_km: Optional[Decimal] = None
    description: str = ''

    @property
    def fee(self):
        return self.delivery_fee if self.order_type == OrderType.DELIVERY else self.service_fee


# --- Construction ---

def _parse_quantity(value, index):
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError('Quantity must be a whole number', item=index)
    try:
        quantity = int(value)
    except ValueError:
        raise ValidationError('Quantity must be a whole number', item=index)
    if not MIN_ITEM_QUANTITY <= quantity <= MAX_ITEM_QUANTITY:
        raise ValidationError(
            f'Quantity must be between {MIN_ITEM_QUANTITY} and {MAX_ITEM_QUANTITY}', item=index
        )
    return quantity


def _parse_food_id(value, index):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('Invalid food id', item=index)


def compute_order(items, order_type, vehicle_class=None, destination=None, tip=0,
                  delivery_fee=None, distance_km=None, description=''):
    """
    Validate cart input and price it.

    items: list of {'food_id', 'quantity'}; 1 to MAX_ORDER_ITEMS lines.
    destination: {'lat', 'lng', 'address'} for delivery orders.
    delivery_fee: pre-computed by the distance pricing step; used as given.
    """
    if order_type not in OrderType.values:
        raise ValidationError('Invalid order type', order_type=order_type)
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError('At least one item is required')
    if len(items) > MAX_ORDER_ITEMS:
        raise ValidationError(f'At most {MAX_ORDER_ITEMS} items per order', count=len(items))

    tip = round2(to_decimal(tip if tip not in (None, '') else 0, 'tip'))
    if tip < 0:
        raise ValidationError('Tip cannot be negative')

    is_delivery = order_type == OrderType.DELIVERY
    dest_lat = dest_lon = None
    dest_address = ''
    fee = ZERO
    if is_delivery:
        if vehicle_class not in VehicleClass.values:
            raise ValidationError('A valid vehicle class is required for delivery', vehicle_class=vehicle_class)
        destination = destination or {}
        lat, lng = destination.get('lat'), destination.get('lng')
        if not is_valid_coordinate(lat, lng):
            raise ValidationError('A valid destination location is required for delivery')
        dest_lat = round(to_decimal(lat, 'lat'), 7)
        dest_lon = round(to_decimal(lng, 'lng'), 7)
        dest_address = (destination.get('address') or '')[:255]
        if delivery_fee in (None, ''):
            raise ValidationError('Delivery fee is required for delivery orders')
        fee = round2(to_decimal(delivery_fee, 'delivery_fee'))
        if fee < 0:
            raise ValidationError('Delivery fee cannot be negative')
    else:
        if vehicle_class or destination:
            raise ValidationError('Vehicle class and destination apply to delivery orders only')
        vehicle_class = ''

    requested = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError('Invalid item', item=index)
        requested.append((
            _parse_food_id(item.get('food_id'), index),
            _parse_quantity(item.get('quantity'), index),
        ))

    food_ids = {food_id for food_id, _ in requested}
    foods = {f.pk: f for f in Food.objects.select_related('restaurant').filter(pk__in=food_ids)}
    missing = sorted(food_ids - set(foods))
    if missing:
        raise NotFound('Food not found', food_ids=','.join(str(i) for i in missing))
    restaurant_ids = {f.restaurant_id for f in foods.values()}
    if len(restaurant_ids) > 1:
        raise InconsistentRestaurant(restaurant_ids=','.join(str(i) for i in sorted(restaurant_ids)))
    unavailable = sorted(pk for pk, f in foods.items() if not f.is_available)
    if unavailable:
        raise ValidationError('Food is not available', food_ids=','.join(str(i) for i in unavailable))

    lines = []
    for food_id, quantity in requested:
        food = foods[food_id]
        lines.append(OrderLine(
            food=food,
            name=food.name,
            quantity=quantity,
            price=round2(food.price),
            total=line_total(food.price, quantity),
        ))

    subtotal = food_subtotal((line.price, line.quantity) for line in lines)
    vat = vat_amount(subtotal)
    service_fee = ZERO if is_delivery else service_fee_for(order_type)
    computed = ComputedOrder(
        restaurant=lines[0].food.restaurant,
        lines=lines,
        order_type=order_type,
        food_total=subtotal,
        vat_total=vat,
        tip=tip,
        delivery_fee=fee,
        service_fee=service_fee,
        vehicle_class=vehicle_class or '',
        destination_lat=dest_lat,
        destination_lon=dest_lon,
        destination_address=dest_address,
        distance_km=round2(distance_km) if distance_km not in (None, '') else None,
        description=(description or '').strip(),
    )
    computed.total = order_total(subtotal, vat, tip, computed.fee)
    return computed


def _create_order_row(customer, computed, customer_phone, is_gift, recipient_phone):
    """Insert the order, retrying on an order-code collision."""
    restaurant = computed.restaurant
    for attempt in range(1, ORDER_CODE_ATTEMPTS + 1):
        try:
            with transaction.atomic():
                return Order.objects.create(
                    code=generate_order_code(),
                    customer=customer,
                    customer_phone=customer_phone,
                    is_gift=is_gift,
                    recipient_phone=recipient_phone,
                    restaurant=restaurant,
                    restaurant_name=restaurant.name,
                    restaurant_lat=restaurant.latitude,
                    restaurant_lon=restaurant.longitude,
                    order_type=computed.order_type,
                    vehicle_class=computed.vehicle_class,
                    destination_lat=computed.destination_lat,
                    destination_lon=computed.destination_lon,
                    destination_address=computed.destination_address,
                    distance_km=computed.distance_km,
                    food_total=computed.food_total,
                    vat_total=computed.vat_total,
                    delivery_fee=computed.delivery_fee,
                    service_fee=computed.service_fee,
                    tip=computed.tip,
                    total=computed.total,
                    description=computed.description,
                )
        except IntegrityError:
            logger.warning('Order code collision (attempt %s)', attempt)
    raise Conflict('Could not allocate a unique order code')


def place_order(customer, items, order_type, vehicle_class=None, destination=None, tip=0,
                delivery_fee=None, distance_km=None, description='', is_gift=False,
                recipient_phone='', gateway=None):
    """
    Create a Pending order with its items and a pending payment, then start checkout.
    Returns (order, checkout_url). A failed checkout cancels the order and raises.
    """
    from .payments import build_tx_ref, get_payment_gateway

    customer_phone = (customer.phone or '').strip()
    if not customer_phone:
        raise ValidationError('Customer phone number is required')
    recipient_phone = (recipient_phone or '').strip()
    if is_gift and not recipient_phone:
        raise ValidationError('Recipient phone is required for gift orders')
    if not is_gift:
        recipient_phone = ''

    computed = compute_order(
        items, order_type,
        vehicle_class=vehicle_class,
        destination=destination,
        tip=tip,
        delivery_fee=delivery_fee,
        distance_km=distance_km,
        description=description,
    )

    with transaction.atomic():
        order = _create_order_row(customer, computed, customer_phone, bool(is_gift), recipient_phone)
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                food=line.food,
                name=line.name,
                quantity=line.quantity,
                price=line.price,
                total=line.total,
            )
            for line in computed.lines
        ])
        payment = OrderPayment.objects.create(
            order=order,
            amount=order.total,
            currency=settings.DEFAULT_CURRENCY,
            status=PaymentStatus.PENDING,
            tx_ref=build_tx_ref(order.pk),
        )
    logger.info('Order %s placed by user %s, total %s', order.code, customer.pk, order.total)

    gateway = gateway or get_payment_gateway()
    try:
        checkout = gateway.initialize_checkout(
            amount=order.total,
            currency=payment.currency,
            tx_ref=payment.tx_ref,
            customer={
                'first_name': customer.first_name,
                'last_name': customer.last_name,
                'phone': customer_phone,
            },
        )
    except ExternalProviderError as e:
        logger.warning('Checkout failed for order %s: %s', order.code, e)
        with transaction.atomic():
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = e.message
            payment.save(update_fields=['status', 'failure_reason', 'updated_at'])
            order.transition_to(OrderStatus.CANCELLED)
            order.save(update_fields=['status', 'updated_at'])
        raise
    payment.checkout_url = checkout['checkout_url']
    payment.save(update_fields=['checkout_url', 'updated_at'])
    return order, payment.checkout_url


# --- Payment confirmation ---

CUSTOMER_SMS = (
    'Order Confirmed!\n'
    'Order Code: {code}\n'
    'Verification Code: {handoff}\n\n'
    'Please show this verification code upon receiving your order.\n'
    'Thank you for choosing our service!'
)
GIFT_SMS = (
    'You have been gifted!\n'
    'From: {sender}\n'
    'Order Code: {code}\n'
    'Verification Code: {handoff}\n\n'
    'Please provide this code upon receiving the order.'
)


def confirm_payment(tx_ref, gateway=None):
    """
    Apply a gateway-confirmed payment. Call only after the webhook signature is verified.
    Returns (order, changed); a replay of an already paid order returns changed=False
    without touching anything.
    """
    from .payments import get_payment_gateway, parse_tx_ref

    order_id = parse_tx_ref(tx_ref)
    order = (
        Order.objects.visible(include_unpaid=True)
        .select_related('payment', 'restaurant')
        .filter(pk=order_id)
        .first()
    )
    if order is None or not hasattr(order, 'payment'):
        raise NotFound('Order not found', order_id=order_id)
    if order.payment.tx_ref != tx_ref:
        raise ValidationError('Transaction reference does not match the order', tx_ref=tx_ref)
    if order.payment.status == PaymentStatus.PAID:
        logger.info('Payment for order %s already confirmed; ignoring replay', order.code)
        return order, False
    if order.status == OrderStatus.CANCELLED:
        logger.error('Payment %s arrived for cancelled order %s', tx_ref, order.code)
        raise InvalidTransition(order.status, 'paid', message='Order was cancelled before payment')

    gateway = gateway or get_payment_gateway()
    data = gateway.verify(tx_ref)
    gateway_amount = to_decimal(data.get('amount', order.payment.amount), 'amount')
    if gateway_amount < order.payment.amount:
        logger.error('Underpaid order %s: expected %s, got %s', order.code, order.payment.amount, gateway_amount)
        raise ValidationError('Paid amount does not cover the order total',
                              expected=order.payment.amount, received=gateway_amount)

    with transaction.atomic():
        payment = OrderPayment.objects.select_for_update().get(pk=order.pk)
        if payment.status == PaymentStatus.PAID:
            return order, False
        payment.status = PaymentStatus.PAID
        payment.gateway_reference = str(data.get('reference') or '')[:100]
        payment.gateway_method = str(data.get('method') or 'unknown')[:50]
        payment.gateway_amount = round2(gateway_amount)
        payment.gateway_currency = str(data.get('currency') or payment.currency)[:3]
        payment.verified_at = timezone.now()
        payment.payload = data
        payment.save()
        order.handoff_code = generate_verification_code()
        order.save(update_fields=['handoff_code', 'updated_at'])
        transaction.on_commit(lambda: _after_payment_confirmed(order.pk))
    logger.info('Payment confirmed for order %s', order.code)
    return order, True


def _after_payment_confirmed(order_id):
    from .order_notify import notify_restaurant_manager
    from .sms import get_sms_client

    order = Order.objects.select_related('restaurant').get(pk=order_id)
    if order.is_gift:
        message = GIFT_SMS.format(sender=order.customer_phone, code=order.code, handoff=order.handoff_code)
    else:
        message = CUSTOMER_SMS.format(code=order.code, handoff=order.handoff_code)
    try:
        if not get_sms_client().send_message(order.handoff_phone, message):
            logger.warning('Handoff SMS for order %s was not sent', order.code)
    except Exception as e:
        logger.exception('Handoff SMS for order %s failed: %s', order.code, e)
    try:
        notify_restaurant_manager(order.restaurant.manager_id, {
            'orderId': order.pk,
            'orderCode': order.code,
            'totalPrice': order.food_total,
            'typeOfOrder': order.order_type,
            'createdAt': order.created_at,
        })
    except Exception as e:
        logger.exception('New order notification for %s failed: %s', order.code, e)


# --- Restaurant-side transitions ---

def _is_admin(user):
    return user.role == Role.ADMIN or user.is_superuser


def _check_restaurant_actor(order, actor):
    if _is_admin(actor):
        return
    if actor.role == Role.MANAGER and order.restaurant.manager_id == actor.pk:
        return
    raise PermissionDenied('Only the restaurant manager can update this order')


def _lock_order(order_id):
    order = (
        Order.objects.visible()
        .select_for_update(of=('self',))
        .select_related('restaurant')
        .filter(pk=order_id)
        .first()
    )
    if order is None:
        raise NotFound('Order not found', order_id=order_id)
    return order


def _courier_offer(order):
    return {
        'orderId': order.pk,
        'orderCode': order.code,
        'restaurantName': order.restaurant_name,
        'restaurantLocation': {'lat': order.restaurant_lat, 'lng': order.restaurant_lon},
        'deliveryLocation': {
            'lat': order.destination_lat,
            'lng': order.destination_lon,
            'address': order.destination_address,
        },
        'deliveryFee': order.delivery_fee,
        'tip': order.tip,
        'distanceKm': order.distance_km,
        'createdAt': order.created_at,
    }


def update_order_status(order_id, status, actor):
    if status not in OrderStatus.values:
        raise ValidationError(f'Invalid order status: {status}', status=status)
    with transaction.atomic():
        order = _lock_order(order_id)
        _check_restaurant_actor(order, actor)
        if order.order_type == OrderType.DELIVERY and status in (OrderStatus.DELIVERING, OrderStatus.COMPLETED):
            raise InvalidTransition(
                order.status, status,
                message=f'Delivery orders move to {status} only through code verification',
            )
        if order.order_type != OrderType.DELIVERY and status == OrderStatus.DELIVERING:
            raise InvalidTransition(
                order.status, status, message=f'{order.get_order_type_display()} orders are never delivered',
            )
        order.transition_to(status)
        order.save(update_fields=['status', 'updated_at'])
        courier_id = order.courier_id
        transaction.on_commit(lambda: _after_status_change(order, courier_id))
    logger.info('Order %s moved to %s by user %s', order.code, status, actor.pk)
    return order


def _after_status_change(order, courier_id):
    from core.apps import get_presence_registry
    from .order_notify import notify_courier_group, notify_customer, send_to_user

    update = {'orderId': order.pk, 'orderCode': order.code, 'status': order.status}
    notify_customer(order.customer_id, 'orderStatus', update)
    if order.status == OrderStatus.COOKED and order.order_type == OrderType.DELIVERY and not courier_id:
        notify_courier_group(order.vehicle_class, _courier_offer(order))
    if order.status == OrderStatus.CANCELLED and courier_id:
        get_presence_registry().release_delivery(courier_id, order.pk)
        send_to_user(courier_id, 'orderStatus', update)


def _codes_match(expected, given):
    return bool(expected) and hmac.compare_digest(str(expected), str(given or '').strip())


def verify_pickup(order_id, code, actor):
    """
    Restaurant hands the order over. Delivery: courier pickup code -> Delivering.
    Takeaway/DineIn: customer handoff code -> Completed. Records the restaurant deposit.
    """
    with transaction.atomic():
        order = _lock_order(order_id)
        _check_restaurant_actor(order, actor)
        if order.status != OrderStatus.COOKED:
            raise InvalidTransition(order.status, 'pickup', message='Only cooked orders can be picked up')
        if order.order_type == OrderType.DELIVERY:
            if not order.courier_id:
                raise Conflict('No courier has accepted this order yet', order_id=order.pk)
            if not _codes_match(order.pickup_code, code):
                raise InvalidVerificationCode('Invalid pickup verification code')
            order.transition_to(OrderStatus.DELIVERING)
        else:
            if not _codes_match(order.handoff_code, code):
                raise InvalidVerificationCode('Invalid pickup verification code')
            order.transition_to(OrderStatus.COMPLETED)
        order.save(update_fields=['status', 'updated_at'])
        entry = ledger.record_deposit(
            ledger.Owner.for_restaurant(order.restaurant),
            order.food_total,
            note=f'Deposit for order {order.code}',
            settled=True,
            order=order,
        )
        transaction.on_commit(lambda: _after_status_change(order, order.courier_id))
    logger.info('Order %s picked up; restaurant deposit %s', order.code, entry.pk)
    return order, entry


def verify_delivery(order_id, code, courier):
    """Courier hands the order to the customer: handoff code -> Completed, courier deposit of the delivery fee."""
    from core.apps import get_presence_registry

    with transaction.atomic():
        order = (
            Order.objects.visible()
            .select_for_update(of=('self',))
            .filter(pk=order_id, courier=courier, status=OrderStatus.DELIVERING)
            .first()
        )
        if order is None:
            raise NotFound('Order not found or not assigned to you', order_id=order_id)
        if not _codes_match(order.handoff_code, code):
            raise InvalidVerificationCode()
        order.transition_to(OrderStatus.COMPLETED)
        order.save(update_fields=['status', 'updated_at'])
        entry = None
        if order.delivery_fee > 0:
            entry = ledger.record_deposit(
                ledger.Owner.for_courier(courier),
                order.delivery_fee,
                note=f'Delivery payment for order {order.code}',
                settled=True,
                order=order,
            )
        transaction.on_commit(lambda: get_presence_registry().release_delivery(courier.pk, order.pk))
        transaction.on_commit(lambda: _after_status_change(order, None))
    logger.info('Order %s delivered by courier %s', order.code, courier.pk)
    return order, entry


# --- Read models ---

def customer_orders(customer):
    return (
        Order.objects.visible()
        .filter(customer=customer)
        .select_related('payment')
        .prefetch_related('items')
        .order_by('-created_at')
    )


def restaurant_orders(restaurant, status=None):
    qs = Order.objects.visible().filter(restaurant=restaurant)
    if status and status != 'all':
        qs = qs.filter(status=status)
    return qs.prefetch_related('items').order_by('-created_at')


def manager_restaurant(manager):
    from .models import Restaurant

    restaurant = Restaurant.objects.filter(manager=manager).order_by('id').first()
    if restaurant is None:
        raise NotFound('Restaurant not found for this manager')
    return restaurant


def available_orders(courier):
    """Cooked, unclaimed delivery orders matching the courier's vehicle, oldest first."""
    return (
        Order.objects.visible()
        .filter(
            status=OrderStatus.COOKED,
            order_type=OrderType.DELIVERY,
            courier__isnull=True,
            vehicle_class=courier.vehicle_class,
        )
        .order_by('created_at', 'id')
    )


def available_order_count(courier):
    return available_orders(courier).count()


def courier_orders(courier, status=None):
    qs = Order.objects.visible().filter(courier=courier)
    if status:
        if status not in COURIER_ORDER_STATUSES:
            raise ValidationError('Invalid status filter', status=status)
        qs = qs.filter(status=status)
    else:
        qs = qs.filter(status__in=COURIER_ORDER_STATUSES)
    return qs.order_by('-updated_at')


def courier_history(courier):
    return courier_orders(courier, OrderStatus.COMPLETED)


def admin_orders(status='all'):
    qs = Order.objects.visible()
    if status and status != 'all':
        if status not in OrderStatus.values:
            raise ValidationError(f'Invalid order status: {status}', status=status)
        qs = qs.filter(status=status)
    return qs.select_related('restaurant', 'customer', 'courier').order_by('-created_at')


def get_customer_order(customer, order_id):
    order = customer_orders(customer).filter(pk=order_id).first()
    if order is None:
        raise NotFound('Order not found', order_id=order_id)
    return order
