"""
Quote Request Lifecycle

PENDING -> RESPONDED (provider's first message) -> ACCEPTED / REFUSED
-> ARCHIVED (terminal). Engaging transitions and provider messages pass
through the unlock gate before anything is written, inside the same
database transaction, so a refused charge leaves no trace.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import MESSAGE_MAX_LENGTH
from .database import MessageRecord, ProviderRecord, QuoteRequestRecord
from .errors import ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
from .gate import UnlockGate
from .models import Message, QuoteRequest, RequestStatus, SubmitQuoteRequest, UnlockResult

logger = logging.getLogger(__name__)


# Provider-initiated transitions. Every status must appear as a key.
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.RESPONDED, RequestStatus.ACCEPTED, RequestStatus.REFUSED, RequestStatus.ARCHIVED,
    }),
    RequestStatus.RESPONDED: frozenset({
        RequestStatus.RESPONDED, RequestStatus.ACCEPTED, RequestStatus.REFUSED, RequestStatus.ARCHIVED,
    }),
    RequestStatus.ACCEPTED: frozenset({
        RequestStatus.ACCEPTED, RequestStatus.REFUSED, RequestStatus.ARCHIVED,
    }),
    RequestStatus.REFUSED: frozenset({
        RequestStatus.ACCEPTED, RequestStatus.REFUSED, RequestStatus.ARCHIVED,
    }),
    RequestStatus.ARCHIVED: frozenset(),
}

# Whether moving a request into this status engages the provider
TOKEN_REQUIRED: dict[RequestStatus, bool] = {
    RequestStatus.PENDING: False,
    RequestStatus.RESPONDED: True,
    RequestStatus.ACCEPTED: True,
    RequestStatus.REFUSED: False,
    RequestStatus.ARCHIVED: False,
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def requires_token(target: RequestStatus) -> bool:
    return TOKEN_REQUIRED[target]


class RequestLifecycle:
    def __init__(self, session: Session, gate: Optional[UnlockGate] = None):
        self.session = session
        self.gate = gate or UnlockGate(session)
        self.last_unlock: Optional[UnlockResult] = None

    def _load(self, request_id: str, lock: bool = False) -> Optional[QuoteRequestRecord]:
        stmt = select(QuoteRequestRecord).where(QuoteRequestRecord.id == request_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _provider(self, provider_id: str) -> ProviderRecord:
        provider = self.session.get(ProviderRecord, provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    def submit_request(self, organizer_id: str, details: SubmitQuoteRequest) -> QuoteRequest:
        self._provider(details.provider_id)
        record = QuoteRequestRecord(
            organizer_id=organizer_id,
            provider_id=details.provider_id,
            status=RequestStatus.PENDING,
            contact_name=details.contact_name,
            contact_email=details.contact_email,
            phone=details.phone,
            event_type=details.event_type,
            event_date=details.event_date,
            guest_count=details.guest_count,
            budget_min=details.budget_min,
            budget_max=details.budget_max,
            message=details.message,
        )
        self.session.add(record)
        self.session.flush()
        logger.info(f"Quote request {record.id} submitted to provider {details.provider_id}")
        return QuoteRequest.model_validate(record)

    def update_status(self, request_id: str, actor_provider_id: str, new_status: RequestStatus) -> QuoteRequest:
        """
        Provider decision on a request it owns.

        Requests owned by another provider are reported as not found.
        RESPONDED and ACCEPTED cost the pair's single token unless it was
        already paid; the status is only written once the gate succeeds.
        """
        self.last_unlock = None
        record = self._load(request_id, lock=True)
        if record is None or record.provider_id != actor_provider_id:
            raise NotFoundError(f"Request {request_id} not found")

        if new_status == RequestStatus.PENDING:
            raise InvalidInputError("A request cannot be moved back to PENDING")
        if not can_transition(record.status, new_status):
            raise InvalidStateError(f"Cannot move request from {record.status.value} to {new_status.value}")

        if requires_token(new_status):
            self.last_unlock = self.gate.ensure_unlocked(actor_provider_id, request_id)

        previous = record.status
        record.status = new_status
        self.session.flush()
        logger.info(f"Request {request_id}: {previous.value} -> {new_status.value} by provider {actor_provider_id}")
        return QuoteRequest.model_validate(record)

    def post_message(self, request_id: str, actor_user_id: str, content: str) -> Message:
        """
        Add a message to the thread of a request.

        Only the organizer and the owning provider may write. A provider
        message passes the unlock gate and moves a PENDING request to
        RESPONDED; organizer messages never touch the ledger.
        """
        self.last_unlock = None
        if not content or len(content) > MESSAGE_MAX_LENGTH:
            raise InvalidInputError(f"Message content must be 1 to {MESSAGE_MAX_LENGTH} characters")

        record = self._load(request_id, lock=True)
        if record is None:
            raise NotFoundError(f"Request {request_id} not found")

        provider = self._provider(record.provider_id)
        is_provider = provider.user_id == actor_user_id
        is_organizer = record.organizer_id == actor_user_id
        if not is_provider and not is_organizer:
            raise ForbiddenError(f"User {actor_user_id} is not a party to request {request_id}")

        if is_provider:
            self.last_unlock = self.gate.ensure_unlocked(provider.id, request_id)

        message = MessageRecord(request_id=request_id, author_id=actor_user_id, content=content)
        self.session.add(message)

        if is_provider and record.status == RequestStatus.PENDING:
            record.status = RequestStatus.RESPONDED
            logger.info(f"Request {request_id}: PENDING -> RESPONDED on first provider message")

        self.session.flush()
        return Message.model_validate(message)

    def get_request(self, request_id: str, actor_user_id: str) -> QuoteRequest:
        record = self._load(request_id)
        if record is None or not self._is_party(record, actor_user_id):
            raise NotFoundError(f"Request {request_id} not found")
        return QuoteRequest.model_validate(record)

    def list_messages(self, request_id: str, actor_user_id: str) -> list[Message]:
        self.get_request(request_id, actor_user_id)
        rows = self.session.execute(
            select(MessageRecord)
            .where(MessageRecord.request_id == request_id)
            .order_by(MessageRecord.created_at.asc())
        ).scalars()
        return [Message.model_validate(r) for r in rows]

    def list_for_provider(self, provider_id: str) -> list[QuoteRequest]:
        rows = self.session.execute(
            select(QuoteRequestRecord)
            .where(QuoteRequestRecord.provider_id == provider_id)
            .order_by(QuoteRequestRecord.created_at.desc())
        ).scalars()
        return [QuoteRequest.model_validate(r) for r in rows]

    def list_for_organizer(self, organizer_id: str) -> list[QuoteRequest]:
        rows = self.session.execute(
            select(QuoteRequestRecord)
            .where(QuoteRequestRecord.organizer_id == organizer_id)
            .order_by(QuoteRequestRecord.created_at.desc())
        ).scalars()
        return [QuoteRequest.model_validate(r) for r in rows]

    def _is_party(self, record: QuoteRequestRecord, user_id: str) -> bool:
        if record.organizer_id == user_id:
            return True
        provider = self.session.get(ProviderRecord, record.provider_id)
        return provider is not None and provider.user_id == user_id
