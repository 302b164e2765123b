import enum


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    STAFF = "staff"
    ADMIN = "admin"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_TRANSIT = "in_transit"
    IN_USE = "in_use"
    RETURNING = "returning"
    RETURNED = "returned"
    RETURNED_WITH_ISSUE = "returned_with_issue"
    CANCELLED = "cancelled"


class TransactionType(str, enum.Enum):
    RENTAL = "rental"
    PURCHASE = "purchase"


class ViolationType(str, enum.Enum):
    DAMAGED = "damaged"
    LATE_RETURN = "late_return"
    NOT_RETURNED = "not_returned"


class ViolationStatus(str, enum.Enum):
    PENDING = "pending"
    CUSTOMER_ACCEPTED = "customer_accepted"
    CUSTOMER_REJECTED = "customer_rejected"
    PENDING_ADMIN_REVIEW = "pending_admin_review"
    RESOLVED = "resolved"


class EvidenceUploadedBy(str, enum.Enum):
    PROVIDER = "provider"
    CUSTOMER = "customer"


class EvidenceFileType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class ResolutionType(str, enum.Enum):
    UPHOLD_CLAIM = "uphold_claim"
    REJECT_CLAIM = "reject_claim"
    COMPROMISE = "compromise"


class SettlementStatus(str, enum.Enum):
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationCategory(str, enum.Enum):
    ORDER = "order"
    VIOLATION = "violation"
    DISPUTE = "dispute"
    SETTLEMENT = "settlement"
    SYSTEM = "system"
