"""
WebSocket consumer for the real-time layer. URL: /ws/realtime/?token=<DRF token>

Frames are JSON objects: {"event": <name>, "data": {...}, "ack": <optional id>}.
The server pushes {"event": <name>, "data": {...}} and answers acknowledged requests
with the same event name and ack id. Each role gets its own handler class; the class
is picked from ROLE_HANDLERS when the connection authenticates.
"""
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.authtoken.models import Token

from core.apps import get_presence_registry
from core.assignment import claim_details, claim_order
from core.constants import is_valid_coordinate
from core.exceptions import DomainError
from core.models import Role, VehicleClass
from core.order_notify import build_message, recover_active_deliveries, send_to_channels_async

logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4003


@database_sync_to_async
def get_user_for_token(token_key):
    """Resolve User from DRF Token. Returns None when missing, unknown or inactive."""
    if not token_key:
        return None
    try:
        token = Token.objects.select_related('user').get(key=token_key)
    except Token.DoesNotExist:
        return None
    return token.user if token.user.is_active else None


@database_sync_to_async
def ensure_active_deliveries_loaded():
    return recover_active_deliveries()


@database_sync_to_async
def claim(courier, order_id):
    order = claim_order(courier, order_id)
    return claim_details(order)


class RoleHandler:
    """Per-role setup and event handlers. events maps client event name -> method name."""
    role = None
    welcome = None
    events = {}

    def __init__(self, consumer, user):
        self.consumer = consumer
        self.user = user
        self.registry = consumer.registry

    def validate(self):
        """Return an error message when this connection may not be registered, else None."""
        return None

    def register(self):
        self.registry.add_connection(self.user.pk, self.role, self.consumer.channel_name)

    async def on_connect(self):
        if self.welcome:
            await self.consumer.emit('message', {'message': self.welcome})

    async def dispatch(self, event, data, ack=None):
        method_name = self.events.get(event)
        if method_name is None:
            await self.consumer.emit_error(f'Unknown event: {event}')
            return
        await getattr(self, method_name)(data, ack)

    async def send_to_user(self, user_id, event, data):
        return await send_to_channels_async(self.registry.channels_for_user(user_id), event, data) > 0


def _location_from(data):
    location = data.get('location') if isinstance(data, dict) else None
    if not isinstance(location, dict):
        return None, 'Location data is required'
    if not is_valid_coordinate(location.get('latitude'), location.get('longitude')):
        return None, 'Invalid location data'
    return location, None


class CustomerHandler(RoleHandler):
    role = Role.CUSTOMER
    welcome = 'Welcome Customer!'
    events = {
        'customerRequestDeliveryLocation': 'request_tracking',
        'customerRequestStopTracking': 'stop_tracking',
    }

    async def on_connect(self):
        await super().on_connect()
        await ensure_active_deliveries_loaded()

    async def request_tracking(self, data, ack=None):
        order_id = data.get('orderId')
        if not order_id:
            await self.consumer.emit_error('Order ID is required')
            return
        await ensure_active_deliveries_loaded()
        courier = self.registry.find_courier_for_order(order_id, self.user.pk)
        if courier is None:
            await self.consumer.emit_error('No active delivery found for your order')
            return
        channels = self.registry.role_channels(Role.COURIER, user_id=courier)
        if not channels:
            await self.consumer.emit_error('Delivery person is currently offline')
            return
        await send_to_channels_async(channels, 'startPeriodicTracking', {
            'customerId': self.user.pk,
            'orderId': str(order_id),
        })
        await self.consumer.emit('trackingStarted', {'deliveryId': courier, 'orderId': str(order_id)}, ack)

    async def stop_tracking(self, data, ack=None):
        courier = data.get('deliveryId')
        if not courier:
            await self.consumer.emit_error('Delivery ID is required')
            return
        binding = self.registry.delivery_for(courier)
        if binding is None or binding.customer_id != str(self.user.pk):
            await self.consumer.emit_error('No active delivery found for your order')
            return
        await send_to_channels_async(
            self.registry.role_channels(Role.COURIER, user_id=courier), 'stopPeriodicTracking', {}
        )
        await self.consumer.emit('trackingStopped', {'deliveryId': str(courier)}, ack)


class CourierHandler(RoleHandler):
    role = Role.COURIER
    events = {
        'locationUpdateFromCustomerTracking': 'relay_to_customer',
        'locationUpdateForAdmin': 'relay_to_admin',
        'acceptOrder': 'accept_order',
    }

    def validate(self):
        if self.user.vehicle_class not in VehicleClass.values:
            return 'Invalid delivery vehicle'
        return None

    def register(self):
        self.registry.add_connection(
            self.user.pk, self.role, self.consumer.channel_name, vehicle_class=self.user.vehicle_class
        )

    async def on_connect(self):
        await ensure_active_deliveries_loaded()

    async def relay_to_customer(self, data, ack=None):
        location, error = _location_from(data)
        if error:
            await self.consumer.emit_error(error)
            return
        customer_id, order_id = location.get('customerId'), location.get('orderId')
        if not customer_id or not order_id:
            await self.consumer.emit_error('Customer ID and Order ID are required')
            return
        binding = self.registry.delivery_for(self.user.pk)
        if binding is None:
            await self.consumer.emit_error('No active order assigned')
            return
        if binding.order_id != str(order_id):
            await self.consumer.emit_error('You are not assigned to this order')
            return
        if binding.customer_id != str(customer_id):
            await self.consumer.emit_error('Customer mismatch for this delivery')
            return
        payload = {
            'location': {
                'latitude': location['latitude'],
                'longitude': location['longitude'],
                'accuracy': location.get('accuracy'),
                'timestamp': location.get('timestamp'),
                'deliveryPersonId': self.user.pk,
                'deliveryPersonName': location.get('deliveryPersonName') or self.user.display_name,
                'orderId': binding.order_id,
            },
        }
        if not await self.send_to_user(binding.customer_id, 'deliveryLocationUpdate', payload):
            logger.info('Customer %s offline; location for order %s not delivered',
                        binding.customer_id, binding.order_id)

    async def relay_to_admin(self, data, ack=None):
        location, error = _location_from(data)
        if error:
            await self.consumer.emit_error(error)
            return
        if location.get('requestType') != 'adminRequest' or not location.get('requestedBy'):
            return
        channels = self.registry.role_channels(Role.ADMIN, user_id=location['requestedBy'])
        await send_to_channels_async(channels, 'deliveryLocationUpdate', {
            'location': dict(location, deliveryPersonId=self.user.pk),
        })

    async def accept_order(self, data, ack=None):
        order_id = data.get('orderId')
        if not order_id:
            await self.consumer.emit('acceptOrder', {'status': 'error', 'message': 'Order ID is required'}, ack)
            return
        try:
            details = await claim(self.user, order_id)
        except DomainError as e:
            logger.info('Accept order %s by courier %s failed: %s', order_id, self.user.pk, e.message)
            await self.consumer.emit('acceptOrder', dict(status='error', message=e.message, **e.to_dict()), ack)
            return
        await self.consumer.emit('acceptOrder', {
            'status': 'success',
            'message': 'Order accepted successfully',
            'data': details,
        }, ack)


class ManagerHandler(RoleHandler):
    role = Role.MANAGER
    welcome = 'Welcome Manager!'


class AdminHandler(RoleHandler):
    role = Role.ADMIN
    welcome = 'Welcome Admin!'
    events = {
        'adminRequestAllLocations': 'request_all_locations',
    }

    async def request_all_locations(self, data, ack=None):
        channels = [ch for chs in self.registry.courier_channels().values() for ch in chs]
        logger.info('Admin %s requested all courier locations (%s connections)', self.user.pk, len(channels))
        await send_to_channels_async(channels, 'requestLocationUpdateForAdmin', {
            'reason': 'adminRequest',
            'requestedBy': self.user.pk,
        })


ROLE_HANDLERS = {
    Role.CUSTOMER: CustomerHandler,
    Role.COURIER: CourierHandler,
    Role.MANAGER: ManagerHandler,
    Role.ADMIN: AdminHandler,
}


class RealtimeConsumer(AsyncJsonWebsocketConsumer):
    """Authenticated real-time connection for every role."""

    handler = None

    async def connect(self):
        self.registry = get_presence_registry()
        query = parse_qs(self.scope.get('query_string', b'').decode())
        token = (query.get('token') or [''])[0]
        user = await get_user_for_token(token)
        if user is None:
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return
        self.user = user
        await self.accept()

        # Indexed under the user first; register() re-indexes it with the role.
        self.registry.add_connection(user.pk, None, self.channel_name)
        handler_cls = ROLE_HANDLERS.get(user.role)
        handler = handler_cls(self, user) if handler_cls else None
        error = 'Invalid user role' if handler is None else handler.validate()
        if error:
            self.registry.remove_connection(self.channel_name)
            logger.warning('Rejecting connection for user %s: %s', user.pk, error)
            await self.emit_error(error)
            await self.close(code=CLOSE_FORBIDDEN)
            return

        handler.register()
        self.handler = handler
        logger.info('User connected: %s | role=%s | user=%s', self.channel_name, user.role, user.pk)
        await handler.on_connect()

    async def disconnect(self, close_code):
        if getattr(self, 'registry', None) is not None:
            self.registry.remove_connection(self.channel_name)
        logger.info('User disconnected: %s (%s)', self.channel_name, close_code)

    async def receive_json(self, content, **kwargs):
        if self.handler is None:
            return
        if not isinstance(content, dict) or not content.get('event'):
            await self.emit_error('Event name is required')
            return
        data = content.get('data') or {}
        if not isinstance(data, dict):
            await self.emit_error('Event data must be an object')
            return
        try:
            await self.handler.dispatch(content['event'], data, content.get('ack'))
        except DomainError as e:
            await self.emit('error', e.to_dict())
        except Exception:
            logger.exception('Error handling %s for user %s', content.get('event'), self.user.pk)
            await self.emit_error('Failed to process event')

    async def realtime_event(self, message):
        """Handle a push from the channel layer: forward it to the client."""
        await self.send_json({'event': message['event'], 'data': message.get('data', {})})

    async def emit(self, event, data=None, ack=None):
        frame = build_message(event, data)
        out = {'event': frame['event'], 'data': frame['data']}
        if ack is not None:
            out['ack'] = ack
        await self.send_json(out)

    async def emit_error(self, message):
        await self.emit('error', {'error': message})
