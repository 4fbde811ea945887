from functools import partial

import pytest
from django.db import IntegrityError, transaction

from core.assignment import active_order_for, claim_details, claim_order
from core.delivery.presence import ActiveDelivery
from core.exceptions import (
    AlreadyClaimed,
    Conflict,
    CourierAlreadyActive,
    NotDeliverable,
    NotFound,
    NotReady,
    PermissionDenied,
    VehicleMismatch,
)
from core.models import Order, OrderStatus, Role, User


@pytest.mark.django_db
class TestClaimOrder:
    def test_claim_binds_courier_and_issues_pickup_code(self, paid_order, courier):
        order = paid_order(status=OrderStatus.COOKED)
        claimed = claim_order(courier, order.pk)
        stored = Order.objects.get(pk=order.pk)
        assert stored.courier_id == courier.pk
        assert stored.status == OrderStatus.COOKED
        assert len(stored.pickup_code) == 6
        assert claim_details(claimed)['pickUpVerification'] == stored.pickup_code

    def test_second_courier_sees_already_claimed(self, paid_order, courier, other_courier):
        order = paid_order(status=OrderStatus.COOKED)
        claim_order(courier, order.pk)
        with pytest.raises(AlreadyClaimed):
            claim_order(other_courier, order.pk)
        assert Order.objects.get(pk=order.pk).courier_id == courier.pk

    def test_courier_with_active_order_is_refused(self, paid_order, courier):
        first = paid_order(status=OrderStatus.COOKED)
        second = paid_order(status=OrderStatus.COOKED)
        claim_order(courier, first.pk)
        with pytest.raises(CourierAlreadyActive) as exc:
            claim_order(courier, second.pk)
        assert exc.value.details['order_id'] == first.pk
        assert Order.objects.get(pk=second.pk).courier_id is None

    def test_completed_order_frees_the_courier(self, paid_order, courier):
        first = paid_order(status=OrderStatus.COOKED)
        second = paid_order(status=OrderStatus.COOKED)
        claim_order(courier, first.pk)
        Order.objects.filter(pk=first.pk).update(status=OrderStatus.COMPLETED)
        claim_order(courier, second.pk)
        assert active_order_for(courier).pk == second.pk

    def test_not_ready(self, paid_order, courier):
        order = paid_order(status=OrderStatus.PREPARING)
        with pytest.raises(NotReady):
            claim_order(courier, order.pk)

    def test_not_deliverable(self, paid_order, courier):
        order = paid_order(order_type='takeaway', lines=(('shiro', 1),), status=OrderStatus.COOKED)
        with pytest.raises(NotDeliverable):
            claim_order(courier, order.pk)

    def test_vehicle_mismatch(self, paid_order, car_courier):
        order = paid_order(status=OrderStatus.COOKED)
        with pytest.raises(VehicleMismatch):
            claim_order(car_courier, order.pk)

    def test_unpaid_order_is_invisible(self, place, courier):
        order = place()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.COOKED)
        with pytest.raises(NotFound):
            claim_order(courier, order.pk)

    def test_only_couriers_claim(self, paid_order, customer):
        order = paid_order(status=OrderStatus.COOKED)
        with pytest.raises(PermissionDenied):
            claim_order(customer, order.pk)

    def test_database_refuses_second_active_order(self, paid_order, courier):
        first = paid_order(status=OrderStatus.COOKED)
        second = paid_order(status=OrderStatus.COOKED)
        claim_order(courier, first.pk)
        with pytest.raises(IntegrityError), transaction.atomic():
            Order.objects.filter(pk=second.pk).update(courier=courier)

    def test_after_commit_binds_and_notifies(
        self, paid_order, courier, customer, registry, new_channel, receive,
        django_capture_on_commit_callbacks,
    ):
        customer_channel = new_channel()
        courier_channel = new_channel()
        registry.add_connection(customer.pk, 'customer', customer_channel)
        registry.add_connection(courier.pk, 'courier', courier_channel, vehicle_class='motorcycle')
        order = paid_order(status=OrderStatus.COOKED)
        with django_capture_on_commit_callbacks(execute=True):
            claim_order(courier, order.pk)
        assert registry.delivery_for(courier.pk) == ActiveDelivery(str(order.pk), str(customer.pk))
        accepted = receive(customer_channel)
        assert accepted['event'] == 'orderAccepted'
        assert accepted['data']['deliveryPersonId'] == courier.pk
        location = receive(courier_channel)
        assert location == {
            'type': 'realtime.event',
            'event': 'requestLocationUpdate',
            'data': {'reason': 'orderAccepted'},
        }
        assert registry.idle_courier_channels('motorcycle') == []

    def test_failed_claim_leaves_registry_alone(self, paid_order, courier, registry,
                                                django_capture_on_commit_callbacks):
        order = paid_order(status=OrderStatus.PREPARING)
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(NotReady):
                claim_order(courier, order.pk)
        assert callbacks == []
        assert not registry.is_busy(courier.pk)


@pytest.mark.django_db(transaction=True)
class TestConcurrentClaims:
    def _riders(self, count):
        return [
            User.objects.create_user(
                username=f'racer{i}', password='pass1234', role=Role.COURIER, vehicle_class='motorcycle',
            )
            for i in range(count)
        ]

    def test_many_couriers_one_order_single_winner(self, paid_order, race):
        order = paid_order(status=OrderStatus.COOKED)
        riders = self._riders(5)
        results = race(*[partial(claim_order, rider, order.pk) for rider in riders])

        winners = [r for r in results if isinstance(r, Order)]
        losers = [r for r in results if isinstance(r, Conflict)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert Order.objects.get(pk=order.pk).courier_id == winners[0].courier_id

    def test_one_courier_two_orders_single_claim(self, paid_order, courier, race):
        first = paid_order(status=OrderStatus.COOKED)
        second = paid_order(status=OrderStatus.COOKED)
        results = race(partial(claim_order, courier, first.pk), partial(claim_order, courier, second.pk))

        assert sum(isinstance(r, Order) for r in results) == 1
        assert sum(isinstance(r, CourierAlreadyActive) for r in results) == 1
        assert Order.objects.filter(courier=courier).count() == 1
