"""
Reconciliation gateway factory.
Configures which payment-provider collaborator to use.
"""

from typing import Optional

from booking_core.core.config import get_settings
from booking_core.infrastructure.payment_gateway import HttpReconciliationGateway
from booking_core.services.interfaces.gateway import ReconciliationGateway
from booking_core.services.interfaces.offline_gateway import OfflineGateway


def build_gateway() -> ReconciliationGateway:
    """
    Build the configured gateway.

    PAYMENT_GATEWAY selects the implementation:
    - http: HttpReconciliationGateway (requires provider credentials)
    - offline: OfflineGateway
    """
    settings = get_settings()
    if settings.PAYMENT_GATEWAY == "http" and settings.PAYMENT_GATEWAY_KEY_ID:
        return HttpReconciliationGateway(
            base_url=settings.PAYMENT_GATEWAY_URL,
            key_id=settings.PAYMENT_GATEWAY_KEY_ID,
            key_secret=settings.PAYMENT_GATEWAY_KEY_SECRET,
            webhook_secret=settings.PAYMENT_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )
    return OfflineGateway(webhook_secret=settings.PAYMENT_WEBHOOK_SECRET)


# Singleton instance
_gateway: Optional[ReconciliationGateway] = None


def get_gateway() -> ReconciliationGateway:
    """Get gateway singleton. Used as a FastAPI dependency."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
    return _gateway
