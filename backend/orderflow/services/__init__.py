from orderflow.services.catalog import CatalogService
from orderflow.services.fulfillment import FulfillmentService
from orderflow.services.order_ledger import OrderLedger
from orderflow.services.outbox_service import OutboxService
from orderflow.services.promotions import PromotionsService
from orderflow.services.reconciliation import ReconciliationService
from orderflow.services.user_service import UserService

__all__ = [
    "CatalogService",
    "FulfillmentService",
    "OrderLedger",
    "OutboxService",
    "PromotionsService",
    "ReconciliationService",
    "UserService",
]
