from django.urls import path
from core.views.balance_views import balance_detail, request_withdraw, withdrawal_history

urlpatterns = [
    path('', balance_detail),
    path('withdraw/', request_withdraw),
    path('withdrawals/<str:requester_type>/', withdrawal_history),
]
