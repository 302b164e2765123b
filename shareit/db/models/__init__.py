from shareit.db.models.message import Message
from shareit.db.models.notification import Notification
from shareit.db.models.order import Order, OrderItem
from shareit.db.models.product import Product
from shareit.db.models.resolution import IssueResolution
from shareit.db.models.settlement import DepositSettlement
from shareit.db.models.user import User
from shareit.db.models.violation import RentalViolation, ViolationEvidence

__all__ = [
    "DepositSettlement",
    "IssueResolution",
    "Message",
    "Notification",
    "Order",
    "OrderItem",
    "Product",
    "RentalViolation",
    "User",
    "ViolationEvidence",
]
