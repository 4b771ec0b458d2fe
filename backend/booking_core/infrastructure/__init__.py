"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .payment_gateway import HttpReconciliationGateway

__all__ = ['HttpReconciliationGateway']
