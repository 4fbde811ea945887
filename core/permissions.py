"""
Role-based access for the API: customer, courier, manager, admin.
Decorators run after auth_required and return 403 JSON when the role does not match.
Admin: role admin or superuser; passes every role check that lists it.
"""
from functools import wraps

from django.http import JsonResponse

from core.models import Role


def has_role(user, *roles):
    if not user or not getattr(user, 'is_authenticated', False):
        return False
    if Role.ADMIN in roles and getattr(user, 'is_superuser', False):
        return True
    return getattr(user, 'role', None) in roles


def role_required(*roles):
    """Decorator factory: require request.user.role in roles."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapped(request, *args, **kwargs):
            if not has_role(request.user, *roles):
                return JsonResponse(
                    {'error': 'Forbidden', 'detail': f'Requires role: {", ".join(roles)}'},
                    status=403,
                )
            return view_func(request, *args, **kwargs)
        return wrapped
    return decorator


customer_required = role_required(Role.CUSTOMER)
courier_required = role_required(Role.COURIER)
manager_required = role_required(Role.MANAGER, Role.ADMIN)
admin_required = role_required(Role.ADMIN)
balance_holder_required = role_required(Role.COURIER, Role.MANAGER)
