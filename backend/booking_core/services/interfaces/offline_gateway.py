"""
Offline gateway - no payment provider configured.
Refunds are acknowledged immediately with a locally generated reference.
"""

from decimal import Decimal

from booking_core.services.interfaces.gateway import GatewayRefund, ReconciliationGateway


class OfflineGateway(ReconciliationGateway):
    """
    Use when:
    - Local development without provider credentials
    - Deployments where every refund is settled outside the platform
    """

    async def create_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> GatewayRefund:
        return GatewayRefund(reference=f"OFFLINE_{idempotency_key}", status="pending")
