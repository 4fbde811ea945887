from decimal import Decimal

import pytest

from core import services
from core.exceptions import ExternalProviderError, InconsistentRestaurant, NotFound, ValidationError
from core.models import Food, Order, OrderStatus, PaymentStatus

from .conftest import DESTINATION


def _items(foods, *lines):
    return [{'food_id': foods[name].pk, 'quantity': qty} for name, qty in lines]


@pytest.mark.django_db
class TestComputeOrder:
    def test_delivery_total(self, foods, vat):
        computed = services.compute_order(
            _items(foods, ('doro', 2), ('shiro', 1)), 'delivery',
            vehicle_class='motorcycle', destination=DESTINATION, tip='10', delivery_fee='120',
        )
        assert computed.food_total == Decimal('250.00')
        assert computed.vat_total == Decimal('12.50')
        assert computed.delivery_fee == Decimal('120.00')
        assert computed.total == Decimal('392.50')
        assert computed.total == computed.food_total + computed.vat_total + computed.tip + computed.fee

    def test_takeaway_uses_service_fee(self, foods, vat):
        vat.TAKEAWAY_SERVICE_FEE = Decimal('5')
        computed = services.compute_order(_items(foods, ('shiro', 1)), 'takeaway')
        assert computed.delivery_fee == Decimal('0.00')
        assert computed.service_fee == Decimal('5.00')
        assert computed.total == Decimal('57.50')

    @pytest.mark.parametrize('field', ['tip', 'delivery_fee', 'distance_km'])
    def test_oversized_numbers_are_validation_errors(self, foods, field):
        kwargs = {'vehicle_class': 'motorcycle', 'destination': DESTINATION, 'delivery_fee': '120', field: '1e30'}
        with pytest.raises(ValidationError):
            services.compute_order(_items(foods, ('shiro', 1)), 'delivery', **kwargs)

    def test_five_items_accepted_six_rejected(self, foods):
        five = _items(foods, *[('shiro', 1)] * 5)
        assert len(services.compute_order(five, 'dine_in').lines) == 5
        with pytest.raises(ValidationError):
            services.compute_order(five + five[:1], 'dine_in')

    def test_empty_cart(self, foods):
        with pytest.raises(ValidationError):
            services.compute_order([], 'takeaway')

    def test_unknown_order_type(self, foods):
        with pytest.raises(ValidationError):
            services.compute_order(_items(foods, ('shiro', 1)), 'drone')

    def test_two_restaurants_rejected(self, foods, other_restaurant):
        elsewhere = Food.objects.create(restaurant=other_restaurant, name='Kitfo', price=Decimal('200'))
        items = _items(foods, ('shiro', 1)) + [{'food_id': elsewhere.pk, 'quantity': 1}]
        with pytest.raises(InconsistentRestaurant) as exc:
            services.compute_order(items, 'takeaway')
        assert exc.value.status_code == 409

    def test_unknown_food(self, foods):
        with pytest.raises(NotFound):
            services.compute_order([{'food_id': 999999, 'quantity': 1}], 'takeaway')

    def test_unavailable_food(self, foods):
        Food.objects.filter(pk=foods['tibs'].pk).update(is_available=False)
        with pytest.raises(ValidationError):
            services.compute_order(_items(foods, ('tibs', 1)), 'takeaway')

    @pytest.mark.parametrize('quantity', [0, 1001, 1.5, 'two', True])
    def test_bad_quantity(self, foods, quantity):
        with pytest.raises(ValidationError):
            services.compute_order([{'food_id': foods['shiro'].pk, 'quantity': quantity}], 'takeaway')

    def test_delivery_needs_vehicle_and_destination(self, foods):
        items = _items(foods, ('shiro', 1))
        with pytest.raises(ValidationError):
            services.compute_order(items, 'delivery', destination=DESTINATION, delivery_fee='50')
        with pytest.raises(ValidationError):
            services.compute_order(items, 'delivery', vehicle_class='car', delivery_fee='50')
        with pytest.raises(ValidationError):
            services.compute_order(items, 'delivery', vehicle_class='car', destination=DESTINATION)

    def test_non_delivery_rejects_destination(self, foods):
        with pytest.raises(ValidationError):
            services.compute_order(_items(foods, ('shiro', 1)), 'takeaway', destination=DESTINATION)


@pytest.mark.django_db
class TestPlaceOrder:
    def test_creates_pending_order_with_payment(self, place, gateway, restaurant, vat):
        order = place(tip='10')
        order = Order.objects.visible(include_unpaid=True).get(pk=order.pk)
        assert order.status == OrderStatus.PENDING
        assert order.total == Decimal('392.50')
        assert order.restaurant_name == 'Habesha Kitchen'
        assert order.restaurant_lat == restaurant.latitude
        assert order.items.count() == 2
        assert order.payment.status == PaymentStatus.PENDING
        assert order.payment.tx_ref.startswith(f'CHAPA-{order.pk}-')
        assert order.payment.checkout_url.endswith(order.payment.tx_ref)
        assert gateway.checkouts[0]['amount'] == Decimal('392.50')

    def test_unpaid_orders_are_hidden(self, place):
        order = place()
        assert not Order.objects.visible().filter(pk=order.pk).exists()
        assert Order.objects.visible(include_unpaid=True).filter(pk=order.pk).exists()

    def test_snapshot_survives_restaurant_edit(self, place, restaurant):
        order = place()
        restaurant.name = 'Renamed'
        restaurant.latitude = Decimal('1.0000000')
        restaurant.save()
        order.refresh_from_db()
        assert order.restaurant_name == 'Habesha Kitchen'
        assert order.restaurant_lat == Decimal('9.0100000')

    def test_gift_requires_recipient(self, place):
        with pytest.raises(ValidationError):
            place(is_gift=True)
        order = place(is_gift=True, recipient_phone='+251922000000')
        assert order.handoff_phone == '+251922000000'

    def test_customer_phone_required(self, place, customer):
        customer.phone = ''
        customer.save()
        with pytest.raises(ValidationError):
            place()

    def test_checkout_failure_cancels_order(self, place, gateway):
        gateway.fail_checkout = True
        with pytest.raises(ExternalProviderError):
            place(order_type='takeaway', lines=(('shiro', 1),))
        order = Order.objects.visible(include_unpaid=True).get()
        assert order.status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED

    def test_total_round_trips(self, place, vat):
        order = place(tip='7.35')
        reloaded = Order.objects.visible(include_unpaid=True).get(pk=order.pk)
        assert reloaded.total == reloaded.food_total + reloaded.vat_total + reloaded.tip + reloaded.fee
