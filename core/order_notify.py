"""
Push order events to live websocket connections.
Call after the triggering transaction commits; every sender is best-effort and
returns False (or 0) instead of raising when nothing could be delivered.
"""
import json
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.serializers.json import DjangoJSONEncoder

from core.apps import get_presence_registry

logger = logging.getLogger(__name__)

# Handler name on the consumer: realtime.event -> realtime_event
MESSAGE_TYPE = 'realtime.event'


def build_message(event, data=None):
    """Channel-layer message for one client event; data is made JSON-safe (Decimal, datetime)."""
    payload = json.loads(json.dumps(data if data is not None else {}, cls=DjangoJSONEncoder))
    return {'type': MESSAGE_TYPE, 'event': event, 'data': payload}


async def send_to_channels_async(channels, event, data=None):
    """Send one event to each channel. Returns how many sends succeeded."""
    layer = get_channel_layer()
    if layer is None or not channels:
        return 0
    message = build_message(event, data)
    sent = 0
    for channel_name in channels:
        try:
            await layer.send(channel_name, message)
            sent += 1
        except Exception:
            logger.exception('Failed to push %s to %s', event, channel_name)
    return sent


def send_to_channels(channels, event, data=None):
    if not channels:
        return 0
    try:
        return async_to_sync(send_to_channels_async)(list(channels), event, data)
    except Exception:
        logger.exception('Failed to push %s', event)
        return 0


def send_to_user(user_id, event, data=None, registry=None):
    """Send to every live connection of a user. False when the user has none."""
    registry = registry or get_presence_registry()
    channels = registry.channels_for_user(user_id)
    if not channels:
        logger.info('send_to_user: user %s has no live connections', user_id)
        return False
    return send_to_channels(channels, event, data) > 0


def notify_customer(customer_id, event, data=None, registry=None):
    return send_to_user(customer_id, event, data, registry=registry)


def notify_restaurant_manager(manager_id, order_data, registry=None):
    """Send newOrder to the manager's live connections."""
    if not manager_id:
        logger.info('notify_restaurant_manager: restaurant has no manager')
        return False
    registry = registry or get_presence_registry()
    channels = registry.role_channels('manager', user_id=manager_id)
    if not channels:
        logger.info('notify_restaurant_manager: manager %s offline', manager_id)
        return False
    sent = send_to_channels(channels, 'newOrder', order_data)
    logger.info('Notified manager %s on %s device(s)', manager_id, sent)
    return sent > 0


def notify_courier_group(vehicle_class, message, registry=None):
    """Offer a ready order to idle couriers of one vehicle class. Returns the number of connections reached."""
    registry = registry or get_presence_registry()
    channels = registry.idle_courier_channels(vehicle_class)
    if not channels:
        logger.info('No idle couriers online for %s', vehicle_class)
        return 0
    return send_to_channels(channels, 'deliveryMessage', message)


def request_location_update(courier_ids, reason, registry=None):
    registry = registry or get_presence_registry()
    channels = [ch for courier in courier_ids for ch in registry.role_channels('courier', user_id=courier)]
    return send_to_channels(channels, 'requestLocationUpdate', {'reason': reason})


def recover_active_deliveries(registry=None, force=False):
    """
    Load the active-delivery map if this process has not yet done so, then ask connected
    couriers with a recovered binding to report their location.
    """
    from core.delivery.presence import load_active_deliveries

    registry = registry or get_presence_registry()
    if registry.loaded and not force:
        return []
    couriers = load_active_deliveries(registry, force=force)
    if couriers:
        request_location_update(couriers, 'serverRestart', registry=registry)
    return couriers
