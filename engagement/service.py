import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import GRANT_MAX, GRANT_MIN, REASON_MAX_LENGTH, TOKEN_PACKAGES, UNLOCK_COST
from .database import Database, ProviderRecord, QuoteRequestRecord, UserRecord, get_database
from .errors import ForbiddenError, InvalidInputError, NotFoundError, UnauthenticatedError
from .gate import UnlockGate
from .identity import IdentityDirectory
from .lifecycle import RequestLifecycle
from .models import (
    LedgerAudit,
    Message,
    PackageKey,
    Provider,
    ProviderBalance,
    QuoteRequest,
    RequestStatus,
    SubmitQuoteRequest,
    SubmitQuoteResponse,
    TokenStatusResponse,
    TransactionType,
    UnlockPreview,
    UnlockResult,
    User,
    UserRole,
)
from .notifications import LoggingNotifier, Notifier, notify_safely
from .store import LedgerStore

logger = logging.getLogger(__name__)


class EngagementService:
    """
    Entry point for every boundary operation.

    Each public method runs in one database transaction: either all of its
    rows (balance, unlock, transaction, status, message) are committed or
    none are. Notifications go out only after the commit.
    """

    def __init__(self, database: Optional[Database] = None, notifier: Optional[Notifier] = None):
        self.database = database or get_database()
        self.notifier = notifier or LoggingNotifier()

    # ==================== IDENTITY ====================

    def get_user(self, user_id: str) -> User:
        with self.database.managed_session() as session:
            return User.model_validate(self._authenticated(session, user_id))

    def create_admin(self, email: str, name: Optional[str] = None) -> User:
        with self.database.managed_session() as session:
            return IdentityDirectory(session).create_user(email, name, UserRole.ADMIN)

    def register_provider(
        self,
        business_name: str,
        contact_email: str,
        contact_name: Optional[str] = None,
        welcome_tokens: Optional[int] = None,
    ) -> Provider:
        with self.database.managed_session() as session:
            return IdentityDirectory(session).register_provider(
                business_name, contact_email, contact_name, welcome_tokens
            )

    def provider_id_for_user(self, user_id: str) -> str:
        with self.database.managed_session() as session:
            return self._provider_of(session, user_id).id

    # ==================== GRANT / PURCHASE ====================

    def grant(self, provider_id: str, amount: int, reason: str, actor_user_id: str) -> int:
        self._validate_credit(amount, reason)
        with self.database.managed_session() as session:
            self._require_admin(session, actor_user_id)
            transaction = LedgerStore(session).record_transaction(
                provider_id, amount, TransactionType.GRANT, f"Admin: {reason}"
            )
            logger.info(f"Admin {actor_user_id} granted {amount} tokens to provider {provider_id}")
            return transaction.balance_after

    def refund(
        self,
        provider_id: str,
        amount: int,
        reason: str,
        actor_user_id: str,
        request_id: Optional[str] = None,
    ) -> int:
        self._validate_credit(amount, reason)
        with self.database.managed_session() as session:
            self._require_admin(session, actor_user_id)
            transaction = LedgerStore(session).record_transaction(
                provider_id, amount, TransactionType.REFUND, f"Refund: {reason}", request_id=request_id
            )
            logger.info(f"Admin {actor_user_id} refunded {amount} tokens to provider {provider_id}")
            return transaction.balance_after

    def purchase(self, provider_id: str, package_key: str) -> int:
        try:
            key = PackageKey(package_key)
        except ValueError:
            raise InvalidInputError(f"Unknown token package {package_key!r}")
        package = TOKEN_PACKAGES[key.value]

        with self.database.managed_session() as session:
            transaction = LedgerStore(session).record_transaction(
                provider_id,
                package["tokens"],
                TransactionType.PURCHASE,
                f"Purchase of {package['tokens']} tokens - {package['price']} EUR",
            )
            return transaction.balance_after

    # ==================== REPORTING ====================

    def get_balance(self, provider_id: str) -> int:
        with self.database.managed_session() as session:
            return LedgerStore(session).get_balance(provider_id)

    def token_status(self, provider_id: str, limit: Optional[int] = None, offset: int = 0) -> TokenStatusResponse:
        with self.database.managed_session() as session:
            store = LedgerStore(session)
            return TokenStatusResponse(
                balance=store.get_balance(provider_id),
                transactions=store.history(provider_id, limit, offset),
                total_count=store.count_transactions(provider_id),
            )

    def list_balances(self, actor_user_id: str) -> list[ProviderBalance]:
        with self.database.managed_session() as session:
            self._require_admin(session, actor_user_id)
            rows = session.execute(
                select(ProviderRecord, UserRecord.email)
                .join(UserRecord, UserRecord.id == ProviderRecord.user_id)
                .order_by(ProviderRecord.business_name.asc())
            ).all()
            return [
                ProviderBalance(
                    provider_id=provider.id,
                    business_name=provider.business_name,
                    contact_email=email,
                    balance=provider.token_balance,
                )
                for provider, email in rows
            ]

    def audit_ledger(self, provider_id: str, actor_user_id: str) -> LedgerAudit:
        with self.database.managed_session() as session:
            self._require_admin(session, actor_user_id)
            return LedgerStore(session).audit(provider_id)

    def unlock_preview(self, provider_id: str, request_id: str) -> UnlockPreview:
        with self.database.managed_session() as session:
            self._owned_request(session, provider_id, request_id)
            unlocked = UnlockGate(session).is_unlocked(provider_id, request_id)
            return UnlockPreview(
                request_id=request_id,
                unlocked=unlocked,
                cost=0 if unlocked else UNLOCK_COST,
                balance=LedgerStore(session).get_balance(provider_id),
            )

    def is_unlocked(self, provider_id: str, request_id: str) -> bool:
        with self.database.managed_session() as session:
            return UnlockGate(session).is_unlocked(provider_id, request_id)

    def ensure_unlocked(self, provider_id: str, request_id: str) -> UnlockResult:
        with self.database.managed_session() as session:
            self._owned_request(session, provider_id, request_id)
            return UnlockGate(session).ensure_unlocked(provider_id, request_id)

    # ==================== REQUEST LIFECYCLE ====================

    def submit_request(self, details: SubmitQuoteRequest, actor_user_id: Optional[str] = None) -> SubmitQuoteResponse:
        with self.database.managed_session() as session:
            directory = IdentityDirectory(session)
            if actor_user_id is not None:
                organizer_id = self._authenticated(session, actor_user_id).id
            else:
                organizer_id = directory.resolve_or_create_organizer(
                    details.contact_email, details.contact_name
                ).id
            request = RequestLifecycle(session).submit_request(organizer_id, details)
            provider_email = directory.get_user(
                session.get(ProviderRecord, details.provider_id).user_id
            ).email

        notify_safely(self.notifier.request_submitted, request, provider_email)
        return SubmitQuoteResponse(request=request, organizer_id=organizer_id)

    def update_request_status(self, request_id: str, actor_provider_id: str, new_status: RequestStatus) -> QuoteRequest:
        with self.database.managed_session() as session:
            return RequestLifecycle(session).update_status(request_id, actor_provider_id, new_status)

    def update_request_status_as_user(self, request_id: str, actor_user_id: str, new_status: RequestStatus) -> QuoteRequest:
        with self.database.managed_session() as session:
            provider = self._provider_of(session, actor_user_id)
            return RequestLifecycle(session).update_status(request_id, provider.id, new_status)

    def post_message(self, request_id: str, actor_user_id: str, content: str) -> Message:
        with self.database.managed_session() as session:
            self._authenticated(session, actor_user_id)
            lifecycle = RequestLifecycle(session)
            message = lifecycle.post_message(request_id, actor_user_id, content)
            from_provider = lifecycle.last_unlock is not None
            request = lifecycle.get_request(request_id, actor_user_id)

        if from_provider:
            notify_safely(self.notifier.provider_replied, request, message)
        return message

    def get_request(self, request_id: str, actor_user_id: str) -> QuoteRequest:
        with self.database.managed_session() as session:
            return RequestLifecycle(session).get_request(request_id, actor_user_id)

    def list_messages(self, request_id: str, actor_user_id: str) -> list[Message]:
        with self.database.managed_session() as session:
            return RequestLifecycle(session).list_messages(request_id, actor_user_id)

    def list_requests(self, actor_user_id: str) -> list[QuoteRequest]:
        with self.database.managed_session() as session:
            user = self._authenticated(session, actor_user_id)
            lifecycle = RequestLifecycle(session)
            if user.role == UserRole.PROVIDER:
                provider = IdentityDirectory(session).provider_for_user(user.id)
                return lifecycle.list_for_provider(provider.id) if provider else []
            return lifecycle.list_for_organizer(user.id)

    # ==================== HELPERS ====================

    def _validate_credit(self, amount: int, reason: str) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or not GRANT_MIN <= amount <= GRANT_MAX:
            raise InvalidInputError(f"Amount must be an integer between {GRANT_MIN} and {GRANT_MAX}")
        if not reason or not reason.strip() or len(reason) > REASON_MAX_LENGTH:
            raise InvalidInputError(f"Reason must be 1 to {REASON_MAX_LENGTH} characters")

    def _authenticated(self, session: Session, user_id: Optional[str]) -> UserRecord:
        if not user_id:
            raise UnauthenticatedError("Not authenticated")
        user = session.get(UserRecord, user_id)
        if user is None:
            raise UnauthenticatedError("Unknown user")
        return user

    def _require_admin(self, session: Session, user_id: Optional[str]) -> UserRecord:
        user = self._authenticated(session, user_id)
        if user.role != UserRole.ADMIN:
            raise ForbiddenError("Admin access required")
        return user

    def _owned_request(self, session: Session, provider_id: str, request_id: str) -> QuoteRequestRecord:
        request = session.get(QuoteRequestRecord, request_id)
        if request is None or request.provider_id != provider_id:
            raise NotFoundError(f"Request {request_id} not found")
        return request

    def _provider_of(self, session: Session, user_id: Optional[str]) -> ProviderRecord:
        user = self._authenticated(session, user_id)
        provider = IdentityDirectory(session).provider_for_user(user.id)
        if provider is None:
            raise ForbiddenError("Caller is not a provider")
        return provider
