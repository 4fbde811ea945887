from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q

from .constants import ORDER_STATUS_FLOW, TERMINAL_ORDER_STATUSES
from .exceptions import DataIntegrityError, InvalidTransition


# --- Choice constants ---

class Role(models.TextChoices):
    CUSTOMER = 'customer', 'Customer'
    COURIER = 'courier', 'Courier'
    MANAGER = 'manager', 'Manager'
    ADMIN = 'admin', 'Admin'


class VehicleClass(models.TextChoices):
    CAR = 'car', 'Car'
    MOTORCYCLE = 'motorcycle', 'Motorcycle'
    BICYCLE = 'bicycle', 'Bicycle'


class OrderType(models.TextChoices):
    DELIVERY = 'delivery', 'Delivery'
    TAKEAWAY = 'takeaway', 'Takeaway'
    DINE_IN = 'dine_in', 'Dine In'


class OrderStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PREPARING = 'preparing', 'Preparing'
    COOKED = 'cooked', 'Cooked'
    DELIVERING = 'delivering', 'Delivering'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    FAILED = 'failed', 'Failed'
    REFUNDED = 'refunded', 'Refunded'
    CANCELLED = 'cancelled', 'Cancelled'
    PROCESSING = 'processing', 'Processing'
    SUCCESS = 'success', 'Success'
    APPROVED = 'approved', 'Approved'


class RequesterType(models.TextChoices):
    COURIER = 'courier', 'Courier'
    RESTAURANT = 'restaurant', 'Restaurant'


class LedgerType(models.TextChoices):
    DEPOSIT = 'deposit', 'Deposit'
    WITHDRAW = 'withdraw', 'Withdraw'


# --- Models ---

class User(AbstractUser):
    """Custom user; the role decides which real-time handler and API surface applies."""
    role = models.CharField(
        max_length=20, choices=Role.choices, default=Role.CUSTOMER
    )
    phone = models.CharField(max_length=20, blank=True)
    vehicle_class = models.CharField(
        max_length=20, choices=VehicleClass.choices, blank=True,
        help_text='Couriers only'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_user'

    @property
    def display_name(self):
        return f'{self.first_name or ""} {self.last_name or ""}'.strip() or self.username


class Restaurant(models.Model):
    name = models.CharField(max_length=200)
    manager = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='managed_restaurants'
    )
    address = models.TextField(blank=True)
    latitude = models.DecimalField(
        max_digits=10, decimal_places=7, help_text='Pickup point for delivery'
    )
    longitude = models.DecimalField(
        max_digits=10, decimal_places=7, help_text='Pickup point for delivery'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_restaurant'
        ordering = ['name']

    def __str__(self):
        return self.name


class Food(models.Model):
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.CASCADE, related_name='foods'
    )
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    is_available = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_food'
        ordering = ['name']

    def __str__(self):
        return f'{self.name} ({self.restaurant.name})'


class OrderQuerySet(models.QuerySet):
    def visible(self, include_unpaid=False):
        """Orders are hidden until paid; include_unpaid is for the payment-confirmation path only."""
        if include_unpaid:
            return self
        return self.filter(payment__status=PaymentStatus.PAID)

    def active(self):
        return self.exclude(status__in=TERMINAL_ORDER_STATUSES)


class Order(models.Model):
    code = models.CharField(max_length=32, unique=True)
    customer = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name='orders'
    )
    customer_phone = models.CharField(max_length=20)
    is_gift = models.BooleanField(default=False)
    recipient_phone = models.CharField(
        max_length=20, blank=True, help_text='Gift recipient; required when is_gift'
    )

    # Snapshot taken at creation; later restaurant edits do not change it.
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.CASCADE, related_name='orders'
    )
    restaurant_name = models.CharField(max_length=200)
    restaurant_lat = models.DecimalField(max_digits=10, decimal_places=7)
    restaurant_lon = models.DecimalField(max_digits=10, decimal_places=7)

    courier = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='deliveries'
    )

    order_type = models.CharField(
        max_length=20, choices=OrderType.choices, default=OrderType.DELIVERY
    )
    vehicle_class = models.CharField(
        max_length=20, choices=VehicleClass.choices, blank=True
    )
    destination_lat = models.DecimalField(
        max_digits=10, decimal_places=7, null=True, blank=True
    )
    destination_lon = models.DecimalField(
        max_digits=10, decimal_places=7, null=True, blank=True
    )
    destination_address = models.CharField(max_length=255, blank=True)
    distance_km = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True
    )

    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING
    )

    food_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    vat_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    service_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tip = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))

    pickup_code = models.CharField(max_length=12, blank=True)
    handoff_code = models.CharField(max_length=12, blank=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        db_table = 'core_order'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['customer', '-created_at'], name='core_order_customer_idx'),
            models.Index(fields=['restaurant', '-created_at'], name='core_order_restaurant_idx'),
            models.Index(fields=['status', '-updated_at'], name='core_order_status_idx'),
        ]
        constraints = [
            # At most one non-terminal order per courier.
            models.UniqueConstraint(
                fields=['courier'],
                condition=Q(courier__isnull=False) & ~Q(status__in=['completed', 'cancelled']),
                name='unique_active_order_per_courier',
            ),
        ]

    def __str__(self):
        return f'Order {self.code} ({self.restaurant_name})'

    @property
    def is_terminal(self):
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def fee(self):
        return self.delivery_fee if self.order_type == OrderType.DELIVERY else self.service_fee

    @property
    def handoff_phone(self):
        """Phone that receives the handoff code: the gift recipient if any, else the customer."""
        return self.recipient_phone if self.is_gift else self.customer_phone

    def can_transition_to(self, status):
        return status in ORDER_STATUS_FLOW.get(self.status, ())

    def transition_to(self, status):
        """Validate against the status flow and set the new status (caller saves)."""
        if not self.can_transition_to(status):
            raise InvalidTransition(self.status, status)
        self.status = status


class OrderItem(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name='items'
    )
    food = models.ForeignKey(
        Food, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='order_items'
    )
    name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = 'core_order_item'
        ordering = ['order', 'id']

    def __str__(self):
        return f'{self.quantity} x {self.name} (Order {self.order_id})'


class OrderPayment(models.Model):
    """Payment sub-record of an order. The gateway webhook is the only source of truth for status."""
    order = models.OneToOneField(
        Order, on_delete=models.CASCADE, related_name='payment', primary_key=True
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='ETB')
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    tx_ref = models.CharField(max_length=100, unique=True, null=True, blank=True)
    checkout_url = models.URLField(max_length=500, blank=True)
    gateway_reference = models.CharField(max_length=100, blank=True)
    gateway_method = models.CharField(max_length=50, blank=True)
    gateway_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    gateway_currency = models.CharField(max_length=3, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_order_payment'

    def __str__(self):
        return f'Payment for Order {self.order_id} ({self.status})'


# Amount fields fixed at creation; only status and gateway data change afterwards.
LEDGER_MUTABLE_FIELDS = frozenset({'status', 'gateway_response', 'updated_at'})


class LedgerEntry(models.Model):
    """One deposit or withdrawal against a restaurant's or a courier's balance. Append-only."""
    requester_type = models.CharField(max_length=20, choices=RequesterType.choices)
    restaurant = models.ForeignKey(
        Restaurant, on_delete=models.PROTECT, null=True, blank=True,
        related_name='ledger_entries'
    )
    courier = models.ForeignKey(
        User, on_delete=models.PROTECT, null=True, blank=True,
        related_name='ledger_entries'
    )
    order = models.ForeignKey(
        Order, on_delete=models.PROTECT, null=True, blank=True,
        related_name='ledger_entries'
    )
    original_amount = models.DecimalField(max_digits=12, decimal_places=2)
    fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    vat_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    net_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='ETB')
    type = models.CharField(max_length=20, choices=LedgerType.choices)
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    note = models.CharField(max_length=500, blank=True)
    reference = models.CharField(max_length=64, unique=True, null=True, blank=True)
    bank_code = models.CharField(max_length=50, blank=True)
    account_name = models.CharField(max_length=255, blank=True)
    account_number = models.CharField(max_length=50, blank=True)
    gateway_response = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'core_ledger_entry'
        ordering = ['created_at', 'id']
        verbose_name_plural = 'Ledger entries'
        indexes = [
            models.Index(fields=['requester_type', 'status', 'type'], name='core_ledger_kind_idx'),
            models.Index(fields=['restaurant', 'created_at'], name='core_ledger_restaurant_idx'),
            models.Index(fields=['courier', 'created_at'], name='core_ledger_courier_idx'),
        ]
        constraints = [
            # One settlement deposit per order and party.
            models.UniqueConstraint(
                fields=['order', 'requester_type', 'type'],
                condition=Q(order__isnull=False),
                name='unique_order_settlement',
            ),
        ]

    def __str__(self):
        return f'{self.type} {self.net_amount} ({self.requester_type}, {self.status})'

    @property
    def owner_id(self):
        return self.courier_id if self.requester_type == RequesterType.COURIER else self.restaurant_id

    def clean(self):
        if bool(self.restaurant_id) == bool(self.courier_id):
            raise DataIntegrityError('Exactly one of restaurant or courier must be set.')
        expected = RequesterType.COURIER if self.courier_id else RequesterType.RESTAURANT
        if self.requester_type != expected:
            raise DataIntegrityError('requester_type does not match the owner.')

    def save(self, *args, **kwargs):
        if self._state.adding:
            self.clean()
        else:
            update_fields = kwargs.get('update_fields')
            if not update_fields or not set(update_fields) <= LEDGER_MUTABLE_FIELDS:
                raise DataIntegrityError('Ledger entries are append-only; only status and gateway data may change.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise DataIntegrityError('Ledger entries cannot be deleted.')
