import threading
from decimal import Decimal

import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import connections
from rest_framework.authtoken.models import Token

from core import services
from core.apps import get_presence_registry
from core.exceptions import ExternalProviderError
from core.models import Food, Order, OrderPayment, Restaurant, Role, User

DESTINATION = {'lat': '9.0200', 'lng': '38.7500', 'address': 'Bole, Addis Ababa'}


class FakeGateway:
    """Records calls instead of talking to Chapa."""

    def __init__(self):
        self.checkouts = []
        self.verified = []
        self.payouts = []
        self.fail_checkout = False
        self.fail_payout = False
        self.verify_amount = None

    def initialize_checkout(self, amount, currency, tx_ref, customer=None, callback_url=None):
        if self.fail_checkout:
            raise ExternalProviderError('Failed to initialize payment', tx_ref=tx_ref)
        self.checkouts.append({'amount': amount, 'currency': currency, 'tx_ref': tx_ref})
        return {'checkout_url': f'https://checkout.example.com/{tx_ref}', 'tx_ref': tx_ref}

    def verify(self, tx_ref):
        self.verified.append(tx_ref)
        payment = OrderPayment.objects.get(tx_ref=tx_ref)
        amount = self.verify_amount if self.verify_amount is not None else payment.amount
        return {
            'status': 'success',
            'amount': str(amount),
            'currency': 'ETB',
            'method': 'telebirr',
            'reference': f'AP{len(self.verified):04d}',
        }

    def payout(self, account_name, account_number, amount, bank_code, reference, currency=None):
        if self.fail_payout:
            raise ExternalProviderError('Payout rejected by gateway', reference=reference)
        self.payouts.append({
            'account_number': account_number,
            'amount': amount,
            'bank_code': bank_code,
            'reference': reference,
        })
        return {'status': 'success', 'message': 'Transfer queued', 'data': reference}


class FakeSms:
    def __init__(self):
        self.sent = []

    def send_message(self, phone, message):
        self.sent.append((phone, message))
        return True


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr('core.payments.get_payment_gateway', lambda: fake)
    return fake


@pytest.fixture
def sms(monkeypatch):
    fake = FakeSms()
    monkeypatch.setattr('core.sms.get_sms_client', lambda: fake)
    return fake


@pytest.fixture
def vat(settings):
    settings.GOV_VAT = Decimal('0.05')
    settings.RESTAURANT_DEPOSIT_FEE = Decimal('0.08')
    settings.DELIVERY_DEPOSIT_FEE = Decimal('0.1')
    return settings


@pytest.fixture(autouse=True)
def registry():
    reg = get_presence_registry()
    reg.clear()
    async_to_sync(get_channel_layer().flush)()
    yield reg
    reg.clear()


@pytest.fixture
def layer():
    return get_channel_layer()


@pytest.fixture
def new_channel(layer):
    def make():
        return async_to_sync(layer.new_channel)()
    return make


@pytest.fixture
def receive(layer):
    def get(channel):
        return async_to_sync(layer.receive)(channel)
    return get


def _user(username, role, **extra):
    return User.objects.create_user(username=username, password='pass1234', role=role, **extra)


@pytest.fixture
def customer(db):
    return _user('abebe', Role.CUSTOMER, phone='+251911000001', first_name='Abebe', last_name='Kebede')


@pytest.fixture
def other_customer(db):
    return _user('sara', Role.CUSTOMER, phone='+251911000009')


@pytest.fixture
def manager(db):
    return _user('manager', Role.MANAGER, phone='+251911000002')


@pytest.fixture
def admin_user(db):
    return _user('admin', Role.ADMIN)


@pytest.fixture
def courier(db):
    return _user('rider', Role.COURIER, phone='+251911000003', vehicle_class='motorcycle', first_name='Dawit')


@pytest.fixture
def other_courier(db):
    return _user('rider2', Role.COURIER, phone='+251911000004', vehicle_class='motorcycle')


@pytest.fixture
def car_courier(db):
    return _user('driver', Role.COURIER, phone='+251911000005', vehicle_class='car')


@pytest.fixture
def restaurant(manager):
    return Restaurant.objects.create(
        name='Habesha Kitchen', manager=manager, address='Piassa',
        latitude=Decimal('9.0100000'), longitude=Decimal('38.7600000'),
    )


@pytest.fixture
def other_restaurant(db):
    return Restaurant.objects.create(
        name='Yod Abyssinia', latitude=Decimal('9.0000000'), longitude=Decimal('38.7800000'),
    )


@pytest.fixture
def foods(restaurant):
    return {
        'doro': Food.objects.create(restaurant=restaurant, name='Doro Wat', price=Decimal('100.00')),
        'shiro': Food.objects.create(restaurant=restaurant, name='Shiro', price=Decimal('50.00')),
        'tibs': Food.objects.create(restaurant=restaurant, name='Tibs', price=Decimal('180.00')),
    }


@pytest.fixture
def token_for(db):
    def make(user):
        return Token.objects.get_or_create(user=user)[0].key
    return make


@pytest.fixture
def auth(token_for):
    """Headers for the Django test client."""
    def make(user):
        return {'HTTP_AUTHORIZATION': f'Bearer {token_for(user)}'}
    return make


@pytest.fixture
def place(customer, foods, gateway):
    """Place an unpaid order through the service layer."""
    def make(order_type='delivery', lines=(('doro', 2), ('shiro', 1)), who=None, **kwargs):
        items = [{'food_id': foods[name].pk, 'quantity': qty} for name, qty in lines]
        if order_type == 'delivery':
            kwargs.setdefault('vehicle_class', 'motorcycle')
            kwargs.setdefault('destination', dict(DESTINATION))
            kwargs.setdefault('delivery_fee', '120')
        order, _ = services.place_order(who or customer, items=items, order_type=order_type, **kwargs)
        return order
    return make


@pytest.fixture
def paid_order(place, gateway):
    """Place and confirm an order, optionally forcing it to a later status."""
    def make(status=None, **kwargs):
        order = place(**kwargs)
        order, _ = services.confirm_payment(order.payment.tx_ref)
        if status:
            Order.objects.filter(pk=order.pk).update(status=status)
        return Order.objects.select_related('payment', 'restaurant').get(pk=order.pk)
    return make


@pytest.fixture
def race():
    """
    Run each callable in its own thread, all released at once. Returns the result or the
    raised exception of each call, in order. Needs django_db(transaction=True).
    """
    def run(*calls):
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)

        def worker(index, call):
            try:
                barrier.wait()
                results[index] = call()
            except Exception as e:
                results[index] = e
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        return results
    return run
