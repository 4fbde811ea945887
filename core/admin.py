from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.forms import UserChangeForm, UserCreationForm

from . import services
from .exceptions import DomainError
from .models import (
    User,
    Restaurant,
    Food,
    Order,
    OrderItem,
    OrderPayment,
    LedgerEntry,
    OrderStatus,
)


# --- Inlines ---

class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('food', 'name', 'quantity', 'price', 'total')
    can_delete = False


class OrderPaymentInline(admin.StackedInline):
    model = OrderPayment
    extra = 0
    can_delete = False
    readonly_fields = (
        'amount', 'currency', 'status', 'tx_ref', 'checkout_url', 'gateway_reference',
        'gateway_method', 'gateway_amount', 'gateway_currency', 'verified_at', 'failure_reason',
    )
    exclude = ('payload',)


# --- User (replace default auth User admin) ---


class CustomUserCreationForm(UserCreationForm):
    """Add form must declare custom fields so they render and save."""
    class Meta(UserCreationForm.Meta):
        model = User
        fields = UserCreationForm.Meta.fields + ('role', 'phone', 'vehicle_class')


class CustomUserChangeForm(UserChangeForm):
    class Meta:
        model = User
        fields = '__all__'


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    form = CustomUserChangeForm
    add_form = CustomUserCreationForm
    list_display = ('username', 'first_name', 'phone', 'role', 'vehicle_class', 'is_active', 'created_at')
    list_filter = ('role', 'vehicle_class', 'is_active')
    search_fields = ('username', 'first_name', 'last_name', 'phone', 'email')
    ordering = ('-date_joined',)
    readonly_fields = ('created_at', 'updated_at')

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Delivery', {
            'fields': ('role', 'phone', 'vehicle_class', 'created_at', 'updated_at')
        }),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Delivery', {
            'fields': ('role', 'phone', 'vehicle_class')
        }),
    )


@admin.register(Restaurant)
class RestaurantAdmin(admin.ModelAdmin):
    list_display = ('name', 'manager', 'latitude', 'longitude', 'created_at')
    search_fields = ('name', 'address')
    autocomplete_fields = ('manager',)
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Food)
class FoodAdmin(admin.ModelAdmin):
    list_display = ('name', 'restaurant', 'price', 'is_available', 'created_at')
    list_filter = ('is_available', 'restaurant')
    search_fields = ('name', 'restaurant__name')
    autocomplete_fields = ('restaurant',)
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'code', 'restaurant_name', 'customer', 'courier', 'order_type',
        'status', 'payment_status', 'total', 'created_at',
    )
    list_filter = ('status', 'order_type', 'vehicle_class', 'payment__status')
    search_fields = ('code', 'customer__username', 'customer_phone', 'restaurant_name')
    inlines = (OrderItemInline, OrderPaymentInline)
    actions = ('cancel_orders',)
    # Status moves go through the service layer, which checks the transition table.
    readonly_fields = (
        'code', 'customer', 'restaurant', 'restaurant_name', 'restaurant_lat', 'restaurant_lon',
        'courier', 'status', 'food_total', 'vat_total', 'delivery_fee', 'service_fee', 'tip',
        'total', 'pickup_code', 'handoff_code', 'created_at', 'updated_at',
    )

    @admin.display(description='Payment')
    def payment_status(self, obj):
        payment = getattr(obj, 'payment', None)
        return payment.status if payment else '-'

    @admin.action(description='Cancel selected orders')
    def cancel_orders(self, request, queryset):
        cancelled = 0
        for order in queryset:
            try:
                services.update_order_status(order.pk, OrderStatus.CANCELLED, request.user)
            except DomainError as e:
                self.message_user(request, f'{order.code}: {e.message}', messages.WARNING)
                continue
            cancelled += 1
        self.message_user(request, f'Cancelled {cancelled} order(s).', messages.SUCCESS)


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'requester_type', 'restaurant', 'courier', 'type', 'status',
        'original_amount', 'fee', 'net_amount', 'reference', 'created_at',
    )
    list_filter = ('requester_type', 'type', 'status')
    search_fields = ('reference', 'note', 'restaurant__name', 'courier__username')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
