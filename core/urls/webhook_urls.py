"""Gateway callbacks; authenticated by signature, not by token."""
from django.urls import path
from core.views.webhook_views import chapa_payment_webhook, chapa_transfer_webhook

urlpatterns = [
    path('chapa/', chapa_payment_webhook),
    path('chapa/transfer/', chapa_transfer_webhook),
]
