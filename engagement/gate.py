"""
Unlock Gate

The only path by which a token is spent against a quote request. A provider
pays UNLOCK_COST once per (provider, request) pair; the unique constraint on
the unlocks table is what keeps concurrent duplicate calls from charging
twice.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import UNLOCK_COST
from .database import UnlockRecord
from .errors import InsufficientTokensError
from .models import TransactionType, UnlockResult
from .store import LedgerStore

logger = logging.getLogger(__name__)


def spend_description(request_id: str) -> str:
    return f"Response to request #{request_id[-8:]}"


class UnlockGate:
    def __init__(self, session: Session, store: Optional[LedgerStore] = None):
        self.session = session
        self.store = store or LedgerStore(session)

    def is_unlocked(self, provider_id: str, request_id: str) -> bool:
        return self.session.execute(
            select(UnlockRecord.id).where(
                UnlockRecord.provider_id == provider_id,
                UnlockRecord.request_id == request_id,
            )
        ).first() is not None

    def ensure_unlocked(self, provider_id: str, request_id: str) -> UnlockResult:
        """
        Make sure the provider has paid for this request, charging if needed.

        Idempotent: an existing unlock returns charged=False with no side
        effect. Raises InsufficientTokensError, leaving everything untouched,
        when a charge is due and the balance is below UNLOCK_COST. The caller
        owns the transaction and must commit the unlock together with the
        action it gates.
        """
        if self.is_unlocked(provider_id, request_id):
            return self._already_unlocked(provider_id, request_id)

        provider = self.store.get_provider(provider_id, lock=True)
        # A concurrent winner has committed by the time we hold the lock
        if self.is_unlocked(provider_id, request_id):
            return self._already_unlocked(provider_id, request_id)

        if provider.token_balance < UNLOCK_COST:
            logger.warning(
                f"Insufficient tokens: provider={provider_id} request={request_id} "
                f"balance={provider.token_balance}"
            )
            raise InsufficientTokensError(provider.token_balance)

        try:
            with self.session.begin_nested():
                self.session.add(UnlockRecord(provider_id=provider_id, request_id=request_id))
        except IntegrityError:
            if not self.is_unlocked(provider_id, request_id):
                raise
            logger.warning(f"Concurrent unlock detected: provider={provider_id} request={request_id}, not charging")
            return self._already_unlocked(provider_id, request_id)

        transaction = self.store.record_transaction(
            provider_id,
            -UNLOCK_COST,
            TransactionType.SPEND,
            spend_description(request_id),
            request_id=request_id,
        )
        logger.info(
            f"Request unlocked: provider={provider_id} request={request_id} balance={transaction.balance_after}"
        )
        return UnlockResult(
            provider_id=provider_id,
            request_id=request_id,
            charged=True,
            balance=transaction.balance_after,
        )

    def _already_unlocked(self, provider_id: str, request_id: str) -> UnlockResult:
        return UnlockResult(
            provider_id=provider_id,
            request_id=request_id,
            charged=False,
            balance=self.store.get_balance(provider_id),
        )
