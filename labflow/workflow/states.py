"""
Status enumerations shared by the order and result workflows
"""

from enum import Enum as PyEnum


class OrderStatus(str, PyEnum):
    """Order lifecycle status; values are the stable strings stored and shown to operators"""
    ORDER_CREATED = "Order Created"
    SAMPLE_COLLECTION = "Sample Collection"
    IN_PROGRESS = "In Progress"
    PENDING_APPROVAL = "Pending Approval"
    COMPLETED = "Completed"
    DELIVERED = "Delivered"


class OrderPriority(str, PyEnum):
    """Order priority enumeration"""
    NORMAL = "Normal"
    URGENT = "Urgent"
    STAT = "STAT"


class ResultStatus(str, PyEnum):
    """Test result review status enumeration"""
    ENTERED = "Entered"
    UNDER_REVIEW = "Under Review"
    APPROVED = "Approved"
    REPORTED = "Reported"


class ReportStatus(str, PyEnum):
    """Report record status enumeration"""
    GENERATED = "Generated"
    DELIVERED = "Delivered"
    PRINTED = "Printed"


# Statuses that can only be reached once the sample is physically collected
COLLECTION_REQUIRED_STATUSES = frozenset({
    OrderStatus.IN_PROGRESS,
    OrderStatus.PENDING_APPROVAL,
    OrderStatus.COMPLETED,
    OrderStatus.DELIVERED,
})

# Result statuses that count towards order completion
APPROVED_RESULT_STATUSES = frozenset({
    ResultStatus.APPROVED,
    ResultStatus.REPORTED,
})
