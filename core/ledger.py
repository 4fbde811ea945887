"""
Balance engine: append-only deposits and withdrawals per restaurant or courier.

Balance = sum of deposit net amounts - sum of withdrawal net amounts, counting only
entries whose status is in APPROVED_STATUSES. Withdraw requests lock the owner row so
two concurrent requests cannot both pass the balance check.
"""
import logging
import uuid
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import transaction
from django.db.models import Case, DecimalField, ExpressionWrapper, F, Sum, Value, When, Window
from django.db.models.expressions import RowRange

from .exceptions import (
    DataIntegrityError,
    ExternalProviderError,
    InsufficientBalance,
    InvalidAmount,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from .models import LedgerEntry, LedgerType, PaymentStatus, RequesterType, Restaurant, Role, User
from .money import ZERO, deposit_split, round2, to_decimal

logger = logging.getLogger(__name__)

# Settled deposits are stored as PAID; PROCESSING withdrawals reserve their amount until finalized.
APPROVED_STATUSES = (
    PaymentStatus.PAID,
    PaymentStatus.APPROVED,
    PaymentStatus.PROCESSING,
    PaymentStatus.SUCCESS,
)
TERMINAL_LEDGER_STATUSES = (
    PaymentStatus.SUCCESS,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
)
PAYOUT_STATUS_MAP = {
    'success': PaymentStatus.SUCCESS,
    'successful': PaymentStatus.SUCCESS,
    'failed': PaymentStatus.FAILED,
    'failure': PaymentStatus.FAILED,
    'reversed': PaymentStatus.FAILED,
    'cancelled': PaymentStatus.CANCELLED,
}

AMOUNT_FIELD = DecimalField(max_digits=14, decimal_places=2)


class Owner:
    """The party a ledger entry belongs to: one restaurant or one courier."""

    def __init__(self, restaurant=None, courier=None):
        if (restaurant is None) == (courier is None):
            raise DataIntegrityError('Exactly one of restaurant or courier must be given.')
        self.restaurant = restaurant
        self.courier = courier

    @classmethod
    def for_restaurant(cls, restaurant):
        return cls(restaurant=restaurant)

    @classmethod
    def for_courier(cls, courier):
        return cls(courier=courier)

    @property
    def requester_type(self):
        return RequesterType.COURIER if self.courier is not None else RequesterType.RESTAURANT

    @property
    def id(self):
        return self.courier.pk if self.courier is not None else self.restaurant.pk

    def entries(self):
        if self.courier is not None:
            return LedgerEntry.objects.filter(requester_type=RequesterType.COURIER, courier_id=self.courier.pk)
        return LedgerEntry.objects.filter(requester_type=RequesterType.RESTAURANT, restaurant_id=self.restaurant.pk)

    def entry_kwargs(self):
        return {
            'requester_type': self.requester_type,
            'restaurant': self.restaurant,
            'courier': self.courier,
        }

    def lock(self):
        """Row-lock the owner for the rest of the current transaction."""
        if self.courier is not None:
            User.objects.select_for_update().filter(pk=self.courier.pk).first()
        else:
            Restaurant.objects.select_for_update().filter(pk=self.restaurant.pk).first()

    def __repr__(self):
        return f'Owner({self.requester_type}={self.id})'


def resolve_owner(user):
    """Courier -> themselves; manager -> the restaurant they manage."""
    if user.role == Role.COURIER:
        return Owner.for_courier(user)
    if user.role == Role.MANAGER:
        restaurant = Restaurant.objects.filter(manager=user).order_by('id').first()
        if restaurant is None:
            raise NotFound('Restaurant not found for this manager.')
        return Owner.for_restaurant(restaurant)
    raise PermissionDenied('Only couriers and restaurant managers hold a balance.')


def normalize_account_number(phone):
    """+2519XXXXXXXX -> 09XXXXXXXX for mobile-money payouts; other values pass through."""
    number = (phone or '').strip().replace(' ', '')
    if number.startswith('+251'):
        number = number[4:]
        if len(number) == 9 and number.startswith('9'):
            number = '0' + number
    return number


def _signed_amount():
    """Net amount with withdrawals negated; entries outside APPROVED_STATUSES count as zero."""
    return Case(
        When(
            status__in=APPROVED_STATUSES, type=LedgerType.DEPOSIT,
            then=F('net_amount'),
        ),
        When(
            status__in=APPROVED_STATUSES, type=LedgerType.WITHDRAW,
            then=ExpressionWrapper(F('net_amount') * Value(Decimal('-1')), output_field=AMOUNT_FIELD),
        ),
        default=Value(ZERO),
        output_field=AMOUNT_FIELD,
    )


def current_balance(owner):
    try:
        total = owner.entries().aggregate(total=Sum(_signed_amount()))['total']
        return round2(total if total is not None else ZERO)
    except (InvalidOperation, TypeError, ValueError) as e:
        logger.error('Balance computation failed for %r: %s', owner, e)
        raise DataIntegrityError('Stored ledger amounts are malformed', owner=repr(owner))


def history(owner):
    """Entries oldest first, each annotated with running_balance."""
    return owner.entries().annotate(
        running_balance=Window(
            expression=Sum(_signed_amount()),
            order_by=[F('created_at').asc(), F('id').asc()],
            frame=RowRange(start=None, end=0),
        )
    ).order_by('created_at', 'id')


def record_deposit(owner, gross_amount, note='', settled=False, order=None, currency=None):
    """
    Record a deposit; fee, VAT and net are computed once here.
    settled=True stores it as PAID, for deposits that follow a verified pickup or delivery.
    """
    original = round2(to_decimal(gross_amount, 'amount'))
    if original <= 0:
        raise InvalidAmount(amount=original)
    fee, vat, net = deposit_split(original, owner.requester_type)
    entry = LedgerEntry.objects.create(
        **owner.entry_kwargs(),
        order=order,
        original_amount=original,
        fee=fee,
        vat_total=vat,
        net_amount=net,
        currency=currency or settings.DEFAULT_CURRENCY,
        type=LedgerType.DEPOSIT,
        status=PaymentStatus.PAID if settled else PaymentStatus.PENDING,
        note=(note or '')[:500],
    )
    logger.info('Deposit %s for %r: original=%s fee=%s net=%s', entry.pk, owner, original, fee, net)
    return entry


def _new_reference():
    return f'WD-{uuid.uuid4().hex[:20].upper()}'


def record_withdraw_request(owner, amount, bank_code, account_name, account_number, note='', currency=None):
    """
    Create a PROCESSING withdrawal after checking the balance under a row lock on the owner.
    Withdrawals carry no fee: net equals the requested amount.
    """
    amount = round2(to_decimal(amount, 'amount'))
    if amount <= 0:
        raise InvalidAmount(amount=amount)
    if not bank_code:
        raise ValidationError('Bank is required.', field='bank_code')
    if not account_number:
        raise ValidationError('Account number is required.', field='account_number')

    with transaction.atomic():
        owner.lock()
        available = current_balance(owner)
        if amount > available:
            raise InsufficientBalance(available=available, requested=amount)
        entry = LedgerEntry.objects.create(
            **owner.entry_kwargs(),
            original_amount=amount,
            fee=ZERO,
            vat_total=ZERO,
            net_amount=amount,
            currency=currency or settings.DEFAULT_CURRENCY,
            type=LedgerType.WITHDRAW,
            status=PaymentStatus.PROCESSING,
            note=(note or '')[:500],
            reference=_new_reference(),
            bank_code=str(bank_code),
            account_name=account_name or '',
            account_number=account_number,
        )
    logger.info('Withdraw request %s for %r: amount=%s', entry.reference, owner, amount)
    return entry


def request_payout(entry, gateway=None):
    """
    Ask the gateway to pay out a PROCESSING withdrawal, exactly once.
    Provider failure marks the entry FAILED and re-raises; success stores the response
    and leaves it PROCESSING until the transfer webhook finalizes it.
    """
    from .payments import get_payment_gateway

    if entry.type != LedgerType.WITHDRAW or entry.status != PaymentStatus.PROCESSING:
        raise ValidationError('Only processing withdrawals can be paid out.', status=entry.status)
    gateway = gateway or get_payment_gateway()
    try:
        response = gateway.payout(
            account_name=entry.account_name,
            account_number=entry.account_number,
            amount=entry.net_amount,
            bank_code=entry.bank_code,
            reference=entry.reference,
            currency=entry.currency,
        )
    except ExternalProviderError as e:
        logger.warning('Payout %s failed: %s', entry.reference, e)
        entry.status = PaymentStatus.FAILED
        entry.gateway_response = {'error': e.message}
        entry.save(update_fields=['status', 'gateway_response', 'updated_at'])
        raise
    entry.gateway_response = response
    entry.save(update_fields=['gateway_response', 'updated_at'])
    return entry


def finalize_withdrawal(reference, status, payload=None):
    """Apply the transfer webhook outcome. A terminal entry is returned unchanged."""
    new_status = PAYOUT_STATUS_MAP.get((status or '').strip().lower())
    if new_status is None:
        raise ValidationError('Unknown transfer status.', status=status)
    with transaction.atomic():
        entry = (
            LedgerEntry.objects.select_for_update()
            .filter(reference=reference, type=LedgerType.WITHDRAW)
            .first()
        )
        if entry is None:
            raise NotFound('Withdrawal not found.', reference=reference)
        if entry.status in TERMINAL_LEDGER_STATUSES:
            logger.info('Withdrawal %s already %s; ignoring %s', reference, entry.status, status)
            return entry
        entry.status = new_status
        if payload is not None:
            entry.gateway_response = payload
        entry.save(update_fields=['status', 'gateway_response', 'updated_at'])
    logger.info('Withdrawal %s finalized as %s', reference, new_status)
    return entry


def withdrawal_history(requester_type, status=None, entry_type=LedgerType.WITHDRAW):
    if requester_type not in RequesterType.values:
        raise ValidationError('Invalid requester type.', requester_type=requester_type)
    qs = LedgerEntry.objects.filter(requester_type=requester_type, type=entry_type)
    if status:
        qs = qs.filter(status=status)
    return qs.select_related('restaurant', 'courier').order_by('-created_at', '-id')

