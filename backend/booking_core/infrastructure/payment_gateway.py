"""
HTTP client for the payment provider's refund API.
Separated from business logic for clean architecture.
"""

from decimal import Decimal

import httpx

from booking_core.core.exceptions import GatewayUnavailableError
from booking_core.core.logging import get_logger
from booking_core.services.interfaces.gateway import GatewayRefund, ReconciliationGateway

logger = get_logger(__name__)


class HttpReconciliationGateway(ReconciliationGateway):
    """Razorpay-compatible refund client. Amounts go over the wire in minor units."""

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(webhook_secret=webhook_secret)
        self.base_url = base_url.rstrip("/")
        self.auth = (key_id, key_secret)
        self.timeout = timeout
        self.transport = transport

    async def create_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
    ) -> GatewayRefund:
        payload = {
            "amount": int(amount * 100),
            "receipt": idempotency_key,
            "notes": {"reason": reason},
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, auth=self.auth, transport=self.transport
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/payments/{payment_reference}/refund",
                    json=payload,
                    headers={"X-Idempotency-Key": idempotency_key},
                )
        except httpx.HTTPError as e:
            logger.error("gateway_refund_transport_error", payment=payment_reference, error=str(e))
            raise GatewayUnavailableError(
                "Payment gateway unreachable. Retry the refund later.",
                details={"payment_reference": payment_reference},
            ) from e

        if resp.status_code >= 400:
            logger.error(
                "gateway_refund_rejected",
                payment=payment_reference,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
            raise GatewayUnavailableError(
                "Payment gateway rejected the refund request.",
                code="gateway_rejected" if resp.status_code < 500 else None,
                details={"payment_reference": payment_reference, "status_code": resp.status_code},
            )

        data = resp.json()
        logger.info("gateway_refund_created", payment=payment_reference, refund_id=data.get("id"))
        return GatewayRefund(reference=data["id"], status=data.get("status", "pending"))
