from .models import (
    BuyerSnapshot,
    Cancelled,
    DashboardStats,
    Pending,
    Product,
    Sale,
    SaleLineItem,
    SaleRecord,
    User,
    Validated,
)
from .errors import (
    AlreadyProcessedError,
    AuthorizationError,
    DuplicateReceiptError,
    EmptySelectionError,
    InvalidReasonError,
    InvalidStateError,
    NotFoundError,
    UnknownProductError,
    ValidationError,
)

__all__ = [
    "BuyerSnapshot",
    "Cancelled",
    "DashboardStats",
    "Pending",
    "Product",
    "Sale",
    "SaleLineItem",
    "SaleRecord",
    "User",
    "Validated",
    "AlreadyProcessedError",
    "AuthorizationError",
    "DuplicateReceiptError",
    "EmptySelectionError",
    "InvalidReasonError",
    "InvalidStateError",
    "NotFoundError",
    "UnknownProductError",
    "ValidationError",
]
