from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

from .config import GRANT_MIN, GRANT_MAX, REASON_MAX_LENGTH, MESSAGE_MAX_LENGTH

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    RESPONDED = "RESPONDED"
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"
    ARCHIVED = "ARCHIVED"


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    SPEND = "SPEND"
    GRANT = "GRANT"
    REFUND = "REFUND"


class UserRole(str, Enum):
    ORGANIZER = "ORGANIZER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class PackageKey(str, Enum):
    STARTER = "starter"
    POPULAR = "popular"
    PRO = "pro"


# ==================== INPUT SCHEMAS ====================

class GrantTokensRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    amount: int = Field(..., ge=GRANT_MIN, le=GRANT_MAX)
    reason: str = Field(..., min_length=1, max_length=REASON_MAX_LENGTH)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "provider_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 10,
            "reason": "Compensation for listing outage",
        }
    })


class RefundTokensRequest(GrantTokensRequest):
    request_id: Optional[str] = None


class PurchaseTokensRequest(BaseModel):
    package: PackageKey


class UpdateStatusRequest(BaseModel):
    status: RequestStatus


class PostMessageRequest(BaseModel):
    request_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)


class SubmitQuoteRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    contact_name: str = Field(..., min_length=2, max_length=100)
    contact_email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: Optional[str] = None
    event_type: str = Field(..., min_length=1)
    event_date: Optional[date] = None
    guest_count: Optional[int] = Field(default=None, gt=0)
    budget_min: Optional[Decimal] = Field(default=None, ge=0)
    budget_max: Optional[Decimal] = Field(default=None, ge=0)
    message: str = Field(..., min_length=10, max_length=MESSAGE_MAX_LENGTH)

    @model_validator(mode="after")
    def check_budget_range(self) -> "SubmitQuoteRequest":
        if self.budget_min is not None and self.budget_max is not None and self.budget_min > self.budget_max:
            raise ValueError("budget_min must not exceed budget_max")
        return self


class RegisterProviderRequest(BaseModel):
    business_name: str = Field(..., min_length=1, max_length=200)
    contact_email: str = Field(..., pattern=EMAIL_PATTERN)
    contact_name: Optional[str] = None


# ==================== RECORDS ====================

class Transaction(BaseModel):
    id: int
    provider_id: str
    type: TransactionType
    amount: int
    balance_after: int
    description: str
    request_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuoteRequest(BaseModel):
    id: str
    organizer_id: str
    provider_id: str
    status: RequestStatus
    contact_name: str
    contact_email: str
    phone: Optional[str] = None
    event_type: str
    event_date: Optional[date] = None
    guest_count: Optional[int] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    message: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Message(BaseModel):
    id: str
    request_id: str
    author_id: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Provider(BaseModel):
    id: str
    user_id: str
    business_name: str
    token_balance: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class User(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


# ==================== RESPONSES ====================

class UnlockResult(BaseModel):
    provider_id: str
    request_id: str
    charged: bool
    balance: int


class UnlockPreview(BaseModel):
    request_id: str
    unlocked: bool
    cost: int
    balance: int


class BalanceResponse(BaseModel):
    balance: int


class TokenStatusResponse(BaseModel):
    balance: int
    transactions: list[Transaction]
    total_count: int


class ProviderBalance(BaseModel):
    provider_id: str
    business_name: str
    contact_email: Optional[str] = None
    balance: int


class LedgerAudit(BaseModel):
    provider_id: str
    cached_balance: int
    ledger_sum: int
    total_entries: int
    consistent: bool
    first_broken_transaction_id: Optional[int] = None


class SubmitQuoteResponse(BaseModel):
    request: QuoteRequest
    organizer_id: str
