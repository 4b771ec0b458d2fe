from booking_core.schemas.booking import (
    BookingCreate,
    BookingHistoryResponse,
    BookingListResponse,
    BookingResponse,
    StatusUpdate,
)
from booking_core.schemas.cancellation import (
    CancellationApprove,
    CancellationReject,
    CancellationRequest,
    RefundCompleteRequest,
    RefundInitiateRequest,
)
from booking_core.schemas.payment import CashCollectedRequest, LedgerResponse, PaymentIntentRequest
from booking_core.schemas.webhook import PaymentWebhook, WebhookAck

__all__ = [
    "BookingCreate", "BookingHistoryResponse", "BookingListResponse", "BookingResponse", "StatusUpdate",
    "CancellationApprove", "CancellationReject", "CancellationRequest",
    "RefundCompleteRequest", "RefundInitiateRequest",
    "CashCollectedRequest", "LedgerResponse", "PaymentIntentRequest",
    "PaymentWebhook", "WebhookAck",
]
