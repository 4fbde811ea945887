"""
In-process presence registry for live websocket connections.

Connections are Channels channel names. Every connection is indexed under its user;
couriers, managers and admins are also indexed by role, and couriers by vehicle class
so ready-order offers can skip couriers that are mid-delivery. The active-delivery map
(courier -> order and customer) is rebuilt from the database on first use after a
process start.
"""
import logging
import threading
from collections import namedtuple

logger = logging.getLogger(__name__)

ActiveDelivery = namedtuple('ActiveDelivery', ['order_id', 'customer_id'])

ROLE_INDEXED = ('courier', 'manager', 'admin')


def _key(value):
    return str(value)


class PresenceRegistry:
    """Registry of live connections plus the courier active-delivery map. Safe across threads."""

    def __init__(self):
        self._lock = threading.RLock()
        self._user_channels = {}
        self._role_channels = {role: {} for role in ROLE_INDEXED}
        self._vehicle_channels = {}
        # channel -> (user key, role, vehicle class)
        self._channel_index = {}
        self._active_deliveries = {}
        self.loaded = False

    # --- Connections ---

    def add_connection(self, user_id, role, channel_name, vehicle_class=None):
        user = _key(user_id)
        with self._lock:
            if channel_name in self._channel_index:
                self.remove_connection(channel_name)
            self._user_channels.setdefault(user, set()).add(channel_name)
            if role in self._role_channels:
                self._role_channels[role].setdefault(user, set()).add(channel_name)
            if role == 'courier' and vehicle_class:
                group = self._vehicle_channels.setdefault(vehicle_class, {})
                group.setdefault(user, set()).add(channel_name)
            self._channel_index[channel_name] = (user, role, vehicle_class)
        logger.debug('Connected %s user=%s role=%s', channel_name, user, role)

    def remove_connection(self, channel_name):
        """Drop a channel from every index it was added to; empty entries are removed."""
        with self._lock:
            entry = self._channel_index.pop(channel_name, None)
            if entry is None:
                return False
            user, role, vehicle_class = entry
            _discard(self._user_channels, user, channel_name)
            if role in self._role_channels:
                _discard(self._role_channels[role], user, channel_name)
            if vehicle_class in self._vehicle_channels:
                group = self._vehicle_channels[vehicle_class]
                _discard(group, user, channel_name)
                if not group:
                    del self._vehicle_channels[vehicle_class]
        logger.debug('Disconnected %s user=%s role=%s', channel_name, user, role)
        return True

    def channels_for_user(self, user_id):
        with self._lock:
            return sorted(self._user_channels.get(_key(user_id), ()))

    def role_channels(self, role, user_id=None):
        """Channels of one role, optionally restricted to a single user."""
        with self._lock:
            by_user = self._role_channels.get(role, {})
            if user_id is not None:
                return sorted(by_user.get(_key(user_id), ()))
            return sorted(ch for channels in by_user.values() for ch in channels)

    def courier_channels(self):
        """Mapping of courier key -> channels for every connected courier."""
        with self._lock:
            return {user: sorted(chs) for user, chs in self._role_channels['courier'].items()}

    def idle_courier_channels(self, vehicle_class):
        """Channels of connected couriers of one vehicle class that hold no active delivery."""
        with self._lock:
            group = self._vehicle_channels.get(vehicle_class, {})
            return sorted(
                ch
                for user, channels in group.items()
                if user not in self._active_deliveries
                for ch in channels
            )

    def is_connected(self, user_id):
        with self._lock:
            return bool(self._user_channels.get(_key(user_id)))

    def connection_count(self):
        with self._lock:
            return len(self._channel_index)

    # --- Active deliveries ---

    def bind_delivery(self, courier_id, order_id, customer_id):
        with self._lock:
            self._active_deliveries[_key(courier_id)] = ActiveDelivery(_key(order_id), _key(customer_id))

    def release_delivery(self, courier_id, order_id=None):
        """Remove a courier binding; when order_id is given, only if it still points at that order."""
        courier = _key(courier_id)
        with self._lock:
            current = self._active_deliveries.get(courier)
            if current is None:
                return False
            if order_id is not None and current.order_id != _key(order_id):
                return False
            del self._active_deliveries[courier]
            return True

    def delivery_for(self, courier_id):
        with self._lock:
            return self._active_deliveries.get(_key(courier_id))

    def is_busy(self, courier_id):
        with self._lock:
            return _key(courier_id) in self._active_deliveries

    def find_courier_for_order(self, order_id, customer_id):
        """Courier key bound to this order and customer, or None."""
        wanted = ActiveDelivery(_key(order_id), _key(customer_id))
        with self._lock:
            for courier, binding in self._active_deliveries.items():
                if binding == wanted:
                    return courier
        return None

    def restore(self, bindings):
        """
        Merge (courier_id, order_id, customer_id) rows into the active-delivery map.
        Rows are read before the lock is taken, so a courier bound live in the meantime
        keeps its binding. Returns the courier keys that were added.
        """
        added = []
        with self._lock:
            for courier, order, customer in bindings:
                courier = _key(courier)
                if courier in self._active_deliveries:
                    continue
                self._active_deliveries[courier] = ActiveDelivery(_key(order), _key(customer))
                added.append(courier)
            self.loaded = True
        return added

    def active_deliveries(self):
        with self._lock:
            return dict(self._active_deliveries)

    def clear(self):
        with self._lock:
            self._user_channels.clear()
            for by_user in self._role_channels.values():
                by_user.clear()
            self._vehicle_channels.clear()
            self._channel_index.clear()
            self._active_deliveries.clear()
            self.loaded = False


def _discard(mapping, key, channel_name):
    channels = mapping.get(key)
    if channels is None:
        return
    channels.discard(channel_name)
    if not channels:
        del mapping[key]


def load_active_deliveries(registry, force=False):
    """
    Merge orders that are Cooked or Delivering with a courier into the active-delivery map.
    Returns the courier keys that were added; an already loaded registry is left alone
    unless force is set.
    """
    from core.constants import TRACKABLE_ORDER_STATUSES
    from core.models import Order

    if registry.loaded and not force:
        return []
    rows = (
        Order.objects.visible()
        .filter(status__in=TRACKABLE_ORDER_STATUSES, courier__isnull=False)
        .values_list('courier_id', 'id', 'customer_id')
    )
    couriers = registry.restore(list(rows))
    logger.info('Loaded %s active delivery orders', len(couriers))
    return couriers
