"""Models package for database models."""

from app.models.user import Profile
from app.models.seller import Seller
from app.models.oauth import OAuthCredential, OAuthState
from app.models.catalog import Service, Product
from app.models.appointment import Appointment, DailyQueueEntry
from app.models.order import Order, OrderItem
from app.models.payment import SplitPayment, ProcessedWebhookEvent
from app.models.marketplace_config import MarketplaceConfig

__all__ = [
    "Profile",
    "Seller",
    "OAuthCredential",
    "OAuthState",
    "Service",
    "Product",
    "Appointment",
    "DailyQueueEntry",
    "Order",
    "OrderItem",
    "SplitPayment",
    "ProcessedWebhookEvent",
    "MarketplaceConfig",
]
