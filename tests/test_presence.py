import pytest

from core.delivery.presence import ActiveDelivery, PresenceRegistry, load_active_deliveries
from core.models import Order, OrderStatus
from core.order_notify import notify_courier_group, recover_active_deliveries, send_to_user


@pytest.fixture
def reg():
    return PresenceRegistry()


class TestConnections:
    def test_multiple_connections_per_user(self, reg):
        reg.add_connection(7, 'customer', 'c1')
        reg.add_connection('7', 'customer', 'c2')
        assert reg.channels_for_user(7) == ['c1', 'c2']
        assert reg.connection_count() == 2

    def test_disconnect_leaves_no_empty_entries(self, reg):
        reg.add_connection(3, 'courier', 'k1', vehicle_class='car')
        assert reg.remove_connection('k1')
        assert not reg.is_connected(3)
        assert reg.courier_channels() == {}
        assert reg.idle_courier_channels('car') == []
        assert reg._user_channels == {}
        assert reg._vehicle_channels == {}
        assert not reg.remove_connection('k1')

    def test_role_index(self, reg):
        reg.add_connection(1, 'manager', 'm1')
        reg.add_connection(2, 'manager', 'm2')
        reg.add_connection(3, 'customer', 'c1')
        assert reg.role_channels('manager') == ['m1', 'm2']
        assert reg.role_channels('manager', user_id=2) == ['m2']
        assert reg.role_channels('customer') == []

    def test_re_registering_a_channel_replaces_its_role(self, reg):
        reg.add_connection(5, None, 'x1')
        reg.add_connection(5, 'courier', 'x1', vehicle_class='bicycle')
        assert reg.connection_count() == 1
        assert reg.role_channels('courier', user_id=5) == ['x1']
        reg.remove_connection('x1')
        assert not reg.is_connected(5)

    def test_idle_filter_skips_busy_couriers(self, reg):
        reg.add_connection(1, 'courier', 'a', vehicle_class='motorcycle')
        reg.add_connection(2, 'courier', 'b', vehicle_class='motorcycle')
        reg.add_connection(3, 'courier', 'c', vehicle_class='car')
        reg.bind_delivery(2, 10, 99)
        assert reg.idle_courier_channels('motorcycle') == ['a']
        assert reg.idle_courier_channels('car') == ['c']


class TestActiveDeliveries:
    def test_bind_and_find(self, reg):
        reg.bind_delivery(4, 10, 20)
        assert reg.delivery_for('4') == ActiveDelivery('10', '20')
        assert reg.find_courier_for_order(10, 20) == '4'
        assert reg.find_courier_for_order(10, 21) is None

    def test_release_only_matching_order(self, reg):
        reg.bind_delivery(4, 10, 20)
        assert not reg.release_delivery(4, order_id=11)
        assert reg.is_busy(4)
        assert reg.release_delivery(4, order_id=10)
        assert not reg.is_busy(4)

    def test_binding_survives_disconnect(self, reg):
        reg.add_connection(4, 'courier', 'k', vehicle_class='car')
        reg.bind_delivery(4, 10, 20)
        reg.remove_connection('k')
        reg.add_connection(4, 'courier', 'k2', vehicle_class='car')
        assert reg.delivery_for(4) == ActiveDelivery('10', '20')

    def test_restore_merges_into_live_bindings(self, reg):
        reg.bind_delivery(1, 1, 1)
        assert reg.restore([(2, 5, 6)]) == ['2']
        assert reg.loaded
        assert reg.active_deliveries() == {'1': ActiveDelivery('1', '1'), '2': ActiveDelivery('5', '6')}

    def test_restore_keeps_binding_made_after_the_read(self, reg):
        rows = [(4, 10, 20), (5, 11, 21)]
        reg.bind_delivery(4, 999, 42)
        assert reg.restore(rows) == ['5']
        assert reg.delivery_for(4) == ActiveDelivery('999', '42')
        assert reg.delivery_for(5) == ActiveDelivery('11', '21')


@pytest.mark.django_db
class TestLoadFromDatabase:
    def test_loads_cooked_and_delivering_orders_with_courier(self, paid_order, courier, car_courier, customer):
        cooked = paid_order(status=OrderStatus.COOKED)
        delivering = paid_order(status=OrderStatus.DELIVERING, vehicle_class='car')
        paid_order(status=OrderStatus.COOKED)  # unclaimed
        done = paid_order(status=OrderStatus.COMPLETED)
        Order.objects.filter(pk=cooked.pk).update(courier=courier)
        Order.objects.filter(pk=delivering.pk).update(courier=car_courier)
        Order.objects.filter(pk=done.pk).update(courier=courier)

        reg = PresenceRegistry()
        couriers = load_active_deliveries(reg)
        assert sorted(couriers) == sorted([str(courier.pk), str(car_courier.pk)])
        assert reg.delivery_for(courier.pk) == ActiveDelivery(str(cooked.pk), str(customer.pk))
        assert reg.delivery_for(car_courier.pk).order_id == str(delivering.pk)
        assert load_active_deliveries(reg) == []

    def test_unpaid_orders_are_skipped(self, place, courier):
        order = place()
        Order.objects.filter(pk=order.pk).update(status=OrderStatus.COOKED, courier=courier)
        reg = PresenceRegistry()
        assert load_active_deliveries(reg) == []
        assert reg.loaded

    def test_claim_during_load_keeps_its_binding(self, paid_order, courier, other_courier, monkeypatch):
        order = paid_order(status=OrderStatus.DELIVERING)
        Order.objects.filter(pk=order.pk).update(courier=other_courier)
        reg = PresenceRegistry()
        restore = reg.restore

        def claim_then_restore(rows):
            reg.bind_delivery(courier.pk, 999, 42)
            return restore(rows)

        monkeypatch.setattr(reg, 'restore', claim_then_restore)
        assert load_active_deliveries(reg) == [str(other_courier.pk)]
        assert reg.delivery_for(courier.pk) == ActiveDelivery('999', '42')
        assert reg.delivery_for(other_courier.pk).order_id == str(order.pk)

    def test_recovery_asks_couriers_for_location(self, paid_order, courier, registry, new_channel, receive):
        order = paid_order(status=OrderStatus.DELIVERING)
        Order.objects.filter(pk=order.pk).update(courier=courier)
        channel = new_channel()
        registry.add_connection(courier.pk, 'courier', channel, vehicle_class='motorcycle')
        assert recover_active_deliveries() == [str(courier.pk)]
        assert receive(channel)['data'] == {'reason': 'serverRestart'}
        assert recover_active_deliveries() == []


class TestSenders:
    def test_send_to_offline_user_fails(self, registry):
        assert send_to_user(123, 'orderStatus', {}) is False

    def test_send_to_user_reaches_every_connection(self, registry, new_channel, receive):
        first, second = new_channel(), new_channel()
        registry.add_connection(8, 'customer', first)
        registry.add_connection(8, 'customer', second)
        assert send_to_user(8, 'orderStatus', {'status': 'cooked'})
        assert receive(first)['data'] == {'status': 'cooked'}
        assert receive(second)['event'] == 'orderStatus'

    def test_group_offer_with_no_idle_couriers(self, registry):
        registry.add_connection(1, 'courier', 'busy-courier', vehicle_class='car')
        registry.bind_delivery(1, 2, 3)
        assert notify_courier_group('car', {'orderId': 9}) == 0
