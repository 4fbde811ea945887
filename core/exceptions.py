"""
Domain errors. Each carries the HTTP status it maps to, a short machine code and
optional details (current vs requested state, conflicting ids, balances) so a
client can reconcile its view.
"""


class DomainError(Exception):
    status_code = 400
    code = 'error'
    default_message = 'Request failed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        data = {'error': self.message, 'code': self.code}
        if self.details:
            data['details'] = {k: _plain(v) for k, v in self.details.items()}
        return data


def _plain(value):
    if value is None or isinstance(value, (bool, int, str)):
        return value
    return str(value)


# --- 4xx ---

class ValidationError(DomainError):
    code = 'validation_error'
    default_message = 'Invalid input'


class InvalidAmount(ValidationError):
    code = 'invalid_amount'
    default_message = 'Amount must be greater than zero'


class InvalidVerificationCode(ValidationError):
    code = 'invalid_verification_code'
    default_message = 'Invalid verification code'


class InvalidSignature(ValidationError):
    code = 'invalid_signature'
    default_message = 'Invalid webhook signature'


class PermissionDenied(DomainError):
    status_code = 403
    code = 'forbidden'
    default_message = 'Forbidden'


class NotFound(DomainError):
    status_code = 404
    code = 'not_found'
    default_message = 'Not found'


class InsufficientBalance(DomainError):
    code = 'insufficient_balance'
    default_message = 'Insufficient balance'


# --- Conflicts ---

class Conflict(DomainError):
    status_code = 409
    code = 'conflict'
    default_message = 'Conflict'


class InvalidTransition(Conflict):
    code = 'invalid_transition'

    def __init__(self, current, requested, message=None):
        super().__init__(
            message or f'Invalid status transition from {current} to {requested}',
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class InconsistentRestaurant(Conflict):
    code = 'inconsistent_restaurant'
    default_message = 'All items must belong to the same restaurant'


class CourierAlreadyActive(Conflict):
    code = 'courier_already_active'
    default_message = 'You already have an active order. Complete or cancel it before accepting a new one.'


class AlreadyClaimed(Conflict):
    code = 'already_claimed'
    default_message = 'Order already accepted by another courier'


class NotReady(Conflict):
    code = 'not_ready'
    default_message = 'Order is not ready for delivery'


class NotDeliverable(Conflict):
    code = 'not_deliverable'
    default_message = 'Only delivery orders can be accepted'


class VehicleMismatch(Conflict):
    code = 'vehicle_mismatch'
    default_message = 'You are not eligible to accept this order type'


# --- 5xx ---

class ExternalProviderError(DomainError):
    status_code = 502
    code = 'provider_error'
    default_message = 'External provider request failed'


class ProviderUnavailable(ExternalProviderError):
    code = 'provider_unavailable'
    default_message = 'External provider is unreachable'


class DataIntegrityError(DomainError):
    status_code = 500
    code = 'integrity_error'
    default_message = 'Stored data failed an integrity check'
