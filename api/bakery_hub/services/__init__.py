# bakery_hub/services/__init__.py
"""
Business logic services for Bakery Hub.
"""
from bakery_hub.services.broadcast import BroadcastHub, QueueSubscriber, InProcessFanout, PostgresNotifyFanout
from bakery_hub.services.clients import ClientService
from bakery_hub.services.ledger import LedgerReconciler
from bakery_hub.services.orders import OrderService
from bakery_hub.services.production import ProductionStateMachine
from bakery_hub.services.sequence import SequenceAllocator

__all__ = [
    "BroadcastHub",
    "QueueSubscriber",
    "InProcessFanout",
    "PostgresNotifyFanout",
    "ClientService",
    "LedgerReconciler",
    "OrderService",
    "ProductionStateMachine",
    "SequenceAllocator",
]
