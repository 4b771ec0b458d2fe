"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .gateway import GatewayRefund, ReconciliationGateway
from .offline_gateway import OfflineGateway

__all__ = ['GatewayRefund', 'ReconciliationGateway', 'OfflineGateway']
