"""
Token-Gated Engagement Ledger for an Event Marketplace

This package provides:
- Append-only token ledger with balance snapshots
- Unlock gate: one token per (provider, request) pair, charged at most once
- Quote request lifecycle: pending -> responded -> accepted / refused -> archived
- Admin grants, refunds and package purchases
- Balance and history reporting
"""

from .errors import (
    EngagementError,
    NotFoundError,
    ForbiddenError,
    UnauthenticatedError,
    InvalidInputError,
    InvalidStateError,
    InsufficientTokensError,
)
from .models import (
    RequestStatus,
    TransactionType,
    UserRole,
    PackageKey,
    Transaction,
    QuoteRequest,
    Message,
    UnlockResult,
)
from .database import Database
from .service import EngagementService

__all__ = [
    "EngagementError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthenticatedError",
    "InvalidInputError",
    "InvalidStateError",
    "InsufficientTokensError",
    "RequestStatus",
    "TransactionType",
    "UserRole",
    "PackageKey",
    "Transaction",
    "QuoteRequest",
    "Message",
    "UnlockResult",
    "Database",
    "EngagementService",
]
