"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from booking_core.api.routes import bookings, cancellations, payments, refunds, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(cancellations.router)
api_router.include_router(payments.router)
api_router.include_router(refunds.router)
api_router.include_router(webhooks.router)
