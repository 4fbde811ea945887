"""
Chapa payment gateway: checkout initialization, transaction verification, payouts
and webhook signature checks. Uses urllib with a bounded timeout for every call.
Verification is retried a few times when Chapa is unreachable or answers 5xx; payouts are never retried.
"""
import hashlib
import hmac
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request

from django.conf import settings

from .exceptions import ExternalProviderError, InvalidSignature, ProviderUnavailable, ValidationError

logger = logging.getLogger(__name__)

TX_REF_PREFIX = 'CHAPA'
SIGNATURE_HEADERS = ('HTTP_CHAPA_SIGNATURE', 'HTTP_X_CHAPA_SIGNATURE')


def build_tx_ref(order_id, now_ms=None):
    """Transaction reference CHAPA-<orderId>-<epochMillis>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f'{TX_REF_PREFIX}-{order_id}-{now_ms}'


def parse_tx_ref(tx_ref):
    """Return the order id embedded in a transaction reference."""
    parts = (tx_ref or '').strip().split('-')
    if len(parts) != 3 or parts[0] != TX_REF_PREFIX or not parts[1].isdigit():
        raise ValidationError('Invalid tx_ref format', tx_ref=tx_ref)
    return int(parts[1])


def compute_signature(body, secret):
    if isinstance(body, str):
        body = body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), body or b'', hashlib.sha256).hexdigest()


def verify_webhook_signature(body, signature, secret=None):
    """
    Check an HMAC-SHA256 hex signature of the raw request body. Raises InvalidSignature;
    an unset secret is a configuration error and never passes.
    """
    secret = secret if secret is not None else settings.CHAPA_WEBHOOK_SECRET
    if not secret:
        logger.error('CHAPA_WEBHOOK_SECRET is not set; rejecting webhook')
        raise InvalidSignature('Webhook secret is not configured')
    received = (signature or '').strip().lower()
    if not received:
        raise InvalidSignature('Missing signature')
    expected = compute_signature(body, secret)
    if not hmac.compare_digest(received, expected):
        logger.warning('Webhook signature mismatch')
        raise InvalidSignature()
    return True


def signature_from_request(request):
    for header in SIGNATURE_HEADERS:
        value = request.META.get(header)
        if value:
            return value
    return ''


class ChapaGateway:
    """Thin client for the Chapa REST API."""

    def __init__(self, secret_key=None, base_url=None, timeout=None, read_retries=None):
        self.secret_key = (secret_key if secret_key is not None else settings.CHAPA_SECRET_KEY).strip()
        self.base_url = (base_url or settings.CHAPA_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.read_retries = read_retries if read_retries is not None else settings.PROVIDER_READ_RETRIES

    @property
    def enabled(self):
        return bool(self.secret_key)

    def _request(self, method, path, payload=None, extra_headers=None):
        if not self.enabled:
            raise ExternalProviderError('Payment gateway is not configured')
        url = f'{self.base_url}/{path.lstrip("/")}'
        headers = {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }
        if extra_headers:
            headers.update(extra_headers)
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode('utf-8')
        except urllib.error.HTTPError as e:
            logger.warning('Chapa %s %s returned %s', method, path, e.code)
            error = ProviderUnavailable if e.code >= 500 else ExternalProviderError
            raise error(f'Payment gateway returned {e.code}', path=path)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            logger.warning('Chapa %s %s failed: %s', method, path, e)
            raise ProviderUnavailable('Payment gateway unreachable', path=path)
        try:
            return json.loads(body or '{}')
        except ValueError:
            raise ExternalProviderError('Payment gateway returned invalid JSON', path=path)

    def initialize_checkout(self, amount, currency, tx_ref, customer=None, callback_url=None):
        """Start a hosted checkout. Returns {'checkout_url', 'tx_ref'}."""
        customer = customer or {}
        payload = {
            'amount': str(amount),
            'currency': currency,
            'tx_ref': tx_ref,
            'first_name': customer.get('first_name') or 'Customer',
            'last_name': customer.get('last_name') or '',
            'phone_number': customer.get('phone') or '',
            'callback_url': callback_url or f'{settings.SERVER_URL}/api/webhooks/chapa/',
            'customization': {
                'title': settings.CHAPA_CHECKOUT_TITLE,
                'description': f'Order {tx_ref}',
            },
            'meta': {'hide_receipt': True},
        }
        result = self._request('POST', 'transaction/initialize', payload)
        checkout_url = (result.get('data') or {}).get('checkout_url')
        if result.get('status') != 'success' or not checkout_url:
            logger.warning('Chapa checkout for %s not accepted: %s', tx_ref, result.get('message'))
            raise ExternalProviderError('Failed to initialize payment', tx_ref=tx_ref)
        return {'checkout_url': checkout_url, 'tx_ref': tx_ref}

    def verify(self, tx_ref):
        """
        Verify a transaction. Returns the provider's data dict when it reports success;
        raises ExternalProviderError otherwise. Only ProviderUnavailable is retried.
        """
        path = f'transaction/verify/{urllib.parse.quote(tx_ref, safe="")}'
        attempts = 1 + max(0, int(self.read_retries))
        for attempt in range(1, attempts + 1):
            try:
                result = self._request('GET', path)
                break
            except ProviderUnavailable:
                if attempt == attempts:
                    raise
                logger.info('Retrying Chapa verify for %s (attempt %s)', tx_ref, attempt + 1)
        data = result.get('data') or {}
        if result.get('status') != 'success' or data.get('status') != 'success':
            raise ExternalProviderError('Payment verification failed', tx_ref=tx_ref)
        return data

    def payout(self, account_name, account_number, amount, bank_code, reference, currency=None):
        """Request a bank transfer. Called once per withdrawal; the transfer webhook finalizes it."""
        payload = {
            'account_name': account_name,
            'account_number': account_number,
            'amount': str(amount),
            'currency': currency or settings.DEFAULT_CURRENCY,
            'reference': reference,
            'bank_code': bank_code,
        }
        result = self._request('POST', 'transfers', payload)
        if result.get('status') != 'success':
            raise ExternalProviderError('Payout rejected by gateway', reference=reference)
        return result


def get_payment_gateway():
    return ChapaGateway()
