import pytest
from asgiref.sync import async_to_sync
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator

from core.delivery.routing import websocket_urlpatterns
from core.models import Role, User

application = URLRouter(websocket_urlpatterns)


def communicator(token):
    return WebsocketCommunicator(application, f'/ws/realtime/?token={token}')


def run(coro_fn):
    async_to_sync(coro_fn)()


@pytest.mark.django_db(transaction=True)
class TestConnect:
    def test_unknown_token_is_refused(self):
        async def scenario():
            ws = communicator('nope')
            connected, code = await ws.connect()
            assert not connected
            assert code == 4001
        run(scenario)

    def test_customer_is_welcomed(self, customer, token_for, registry):
        token = token_for(customer)

        async def scenario():
            ws = communicator(token)
            connected, _ = await ws.connect()
            assert connected
            assert await ws.receive_json_from() == {'event': 'message', 'data': {'message': 'Welcome Customer!'}}
            assert registry.channels_for_user(customer.pk)
            assert registry.role_channels(Role.CUSTOMER) == []
            await ws.disconnect()
        run(scenario)
        assert not registry.is_connected(customer.pk)

    def test_courier_without_vehicle_is_closed(self, token_for, registry):
        rider = User.objects.create_user(username='novehicle', password='pass1234', role=Role.COURIER)
        token = token_for(rider)

        async def scenario():
            ws = communicator(token)
            connected, _ = await ws.connect()
            assert connected
            frame = await ws.receive_json_from()
            assert frame == {'event': 'error', 'data': {'error': 'Invalid delivery vehicle'}}
            closed = await ws.receive_output()
            assert closed == {'type': 'websocket.close', 'code': 4003}
        run(scenario)
        assert not registry.is_connected(rider.pk)

    def test_unknown_event(self, manager, token_for):
        token = token_for(manager)

        async def scenario():
            ws = communicator(token)
            await ws.connect()
            await ws.receive_json_from()
            await ws.send_json_to({'event': 'danceParty', 'data': {}})
            assert await ws.receive_json_from() == {'event': 'error', 'data': {'error': 'Unknown event: danceParty'}}
            await ws.disconnect()
        run(scenario)


@pytest.mark.django_db(transaction=True)
class TestLocationRelay:
    def _location(self, customer_id, order_id):
        return {
            'event': 'locationUpdateFromCustomerTracking',
            'data': {'location': {
                'latitude': 9.02, 'longitude': 38.75,
                'customerId': customer_id, 'orderId': order_id,
            }},
        }

    def test_relay_reaches_bound_customer(self, customer, courier, token_for, registry):
        registry.restore([(courier.pk, 77, customer.pk)])
        customer_token, courier_token = token_for(customer), token_for(courier)

        async def scenario():
            customer_ws, courier_ws = communicator(customer_token), communicator(courier_token)
            await customer_ws.connect()
            await customer_ws.receive_json_from()
            await courier_ws.connect()
            await courier_ws.send_json_to(self._location(customer.pk, 77))
            update = await customer_ws.receive_json_from()
            assert update['event'] == 'deliveryLocationUpdate'
            assert update['data']['location']['orderId'] == '77'
            assert update['data']['location']['deliveryPersonId'] == courier.pk
            await customer_ws.disconnect()
            await courier_ws.disconnect()
        run(scenario)

    def test_relay_for_other_order_is_refused(self, customer, courier, token_for, registry):
        registry.restore([(courier.pk, 77, customer.pk)])
        token = token_for(courier)

        async def scenario():
            ws = communicator(token)
            await ws.connect()
            await ws.send_json_to(self._location(customer.pk, 78))
            assert await ws.receive_json_from() == {
                'event': 'error', 'data': {'error': 'You are not assigned to this order'},
            }
            await ws.disconnect()
        run(scenario)
