"""
Reconciliation gateway interface.
The payment provider sits behind this boundary so refund and webhook logic
never depends on a particular provider SDK.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class GatewayRefund:
    reference: str
    status: str


class ReconciliationGateway(ABC):
    """
    Interface for payment-provider collaborators.

    Implementations:
    - HttpReconciliationGateway: Razorpay-compatible REST API over httpx
    - OfflineGateway: no provider, refunds get a local reference
    """

    def __init__(self, webhook_secret: str = ""):
        self.webhook_secret = webhook_secret

    @abstractmethod
    async def create_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> GatewayRefund:
        """
        Ask the provider to refund a captured payment.

        Args:
            payment_reference: Provider payment id of the captured online leg
            amount: Refund amount in major currency units
            reason: Free-text reason forwarded to the provider
            idempotency_key: Stable key so a retried call cannot refund twice

        Raises:
            GatewayUnavailableError on any provider or transport failure
        """
        pass

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA256 over the raw body. Always valid when no secret is configured."""
        if not self.webhook_secret:
            return True
        if not signature:
            return False
        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)
