"""Account records at the system boundary: organizers and providers."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import Config
from .database import ProviderRecord, UserRecord
from .errors import InvalidStateError, NotFoundError
from .models import Provider, TransactionType, User, UserRole
from .store import LedgerStore

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityDirectory:
    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: str) -> UserRecord:
        user = self.session.get(UserRecord, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self.session.execute(
            select(UserRecord).where(UserRecord.email == normalize_email(email))
        ).scalar_one_or_none()

    def create_user(self, email: str, name: Optional[str], role: UserRole) -> User:
        if self.find_user_by_email(email) is not None:
            raise InvalidStateError(f"A user with email {email} already exists")
        user = UserRecord(email=normalize_email(email), name=name, role=role)
        self.session.add(user)
        self.session.flush()
        return User.model_validate(user)

    def resolve_or_create_organizer(self, email: str, name: Optional[str] = None) -> User:
        """
        Lightweight identity for organizers who submit a request without an
        account. The contact email is the key; an existing user is reused
        whatever its role.
        """
        user = self.find_user_by_email(email)
        if user is not None:
            return User.model_validate(user)
        logger.info(f"Creating organizer identity for {normalize_email(email)}")
        return self.create_user(email, name, UserRole.ORGANIZER)

    def provider_for_user(self, user_id: str) -> Optional[ProviderRecord]:
        return self.session.execute(
            select(ProviderRecord).where(ProviderRecord.user_id == user_id)
        ).scalar_one_or_none()

    def register_provider(
        self,
        business_name: str,
        contact_email: str,
        contact_name: Optional[str] = None,
        welcome_tokens: Optional[int] = None,
    ) -> Provider:
        user = self.create_user(contact_email, contact_name, UserRole.PROVIDER)
        provider = ProviderRecord(user_id=user.id, business_name=business_name, token_balance=0)
        self.session.add(provider)
        self.session.flush()

        welcome_tokens = Config.WELCOME_TOKENS if welcome_tokens is None else welcome_tokens
        if welcome_tokens > 0:
            LedgerStore(self.session).record_transaction(
                provider.id, welcome_tokens, TransactionType.GRANT, "Welcome tokens"
            )
        logger.info(f"Registered provider {provider.id} ({business_name})")
        return Provider.model_validate(provider)
