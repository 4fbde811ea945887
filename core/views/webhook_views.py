"""
Gateway callbacks. The signature over the raw body is checked before anything is parsed
or changed; a bad signature gets 400 with no side effects.
"""
import json
import logging

from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core import ledger, services
from core.exceptions import ValidationError
from core.payments import signature_from_request, verify_webhook_signature
from core.utils import domain_errors

logger = logging.getLogger(__name__)


def _verified_payload(request):
    verify_webhook_signature(request.body, signature_from_request(request))
    try:
        data = json.loads(request.body or b'{}')
    except (ValueError, UnicodeDecodeError):
        raise ValidationError('Invalid JSON body')
    if not isinstance(data, dict):
        raise ValidationError('JSON body must be an object')
    return data


@require_http_methods(['POST'])
@domain_errors
def chapa_payment_webhook(request):
    data = _verified_payload(request)
    tx_ref = data.get('tx_ref') or data.get('trx_ref')
    if not tx_ref:
        raise ValidationError('tx_ref is required')
    if (data.get('status') or '').lower() != 'success':
        logger.info('Payment webhook for %s with status %s', tx_ref, data.get('status'))
        return JsonResponse({'message': 'Payment not successful'}, status=400)
    order, changed = services.confirm_payment(tx_ref)
    return JsonResponse({
        'message': 'Webhook processed successfully' if changed else 'Already processed',
        'order_id': order.pk,
    })


@require_http_methods(['POST'])
@domain_errors
def chapa_transfer_webhook(request):
    data = _verified_payload(request)
    reference = data.get('reference')
    if not reference:
        raise ValidationError('reference is required')
    status = data.get('status')
    if not status and data.get('event'):
        # e.g. payout.success / payout.failed
        status = str(data['event']).rsplit('.', 1)[-1]
    entry = ledger.finalize_withdrawal(reference, status, payload=data)
    return JsonResponse({'reference': entry.reference, 'status': entry.status})
