"""Balance, transaction history and withdrawals for couriers and restaurant managers; admin withdrawal history."""
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from core import ledger
from core.exceptions import ExternalProviderError
from core.permissions import admin_required, balance_holder_required
from core.utils import auth_required, domain_errors, ledger_entry_to_dict, parse_json_body


@auth_required
@balance_holder_required
@require_http_methods(['GET'])
@domain_errors
def balance_detail(request):
    """Current balance plus every entry with its running balance."""
    owner = ledger.resolve_owner(request.user)
    entries = ledger.history(owner)
    return JsonResponse({
        'requester_type': owner.requester_type,
        'total_balance': str(ledger.current_balance(owner)),
        'transactions': [ledger_entry_to_dict(e, e.running_balance) for e in entries],
    })


@auth_required
@balance_holder_required
@require_http_methods(['POST'])
@domain_errors
def request_withdraw(request):
    """
    Reserve the amount as a PROCESSING withdrawal, then call the payout once.
    The transfer webhook later marks it SUCCESS or FAILED.
    """
    data = parse_json_body(request)
    owner = ledger.resolve_owner(request.user)
    user = request.user
    entry = ledger.record_withdraw_request(
        owner,
        data.get('amount'),
        bank_code=data.get('bank_code'),
        account_name=data.get('account_name') or user.display_name,
        account_number=data.get('account_number') or ledger.normalize_account_number(user.phone),
        note=data.get('note', ''),
    )
    try:
        ledger.request_payout(entry)
    except ExternalProviderError as e:
        return JsonResponse({
            'error': 'Payout failed.',
            'code': e.code,
            'withdrawal': ledger_entry_to_dict(entry),
        }, status=e.status_code)
    return JsonResponse({
        'message': 'Withdrawal requested.',
        'withdrawal': ledger_entry_to_dict(entry),
        'remaining_balance': str(ledger.current_balance(owner)),
    }, status=201)


@auth_required
@admin_required
@require_http_methods(['GET'])
@domain_errors
def withdrawal_history(request, requester_type):
    entries = ledger.withdrawal_history(
        requester_type,
        status=request.GET.get('status'),
        entry_type=request.GET.get('type', 'withdraw'),
    )
    results = [ledger_entry_to_dict(e) for e in entries]
    return JsonResponse({'results': len(results), 'data': results})
