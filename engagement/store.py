"""
Ledger Store

Balances and transaction history. The transaction log is the source of
truth; `ProviderRecord.token_balance` is a cached projection that is only
ever written here, in the same database transaction as the log append.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import Config, HISTORY_MAX_PAGE_SIZE
from .database import ProviderRecord, TransactionRecord
from .errors import InvalidInputError, InvalidStateError, NotFoundError
from .models import LedgerAudit, Transaction, TransactionType

logger = logging.getLogger(__name__)


class LedgerStore:
    def __init__(self, session: Session):
        self.session = session

    def get_provider(self, provider_id: str, lock: bool = False) -> ProviderRecord:
        stmt = select(ProviderRecord).where(ProviderRecord.id == provider_id)
        if lock:
            # Row lock on PostgreSQL; SQLite already holds the write lock
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        provider = self.session.execute(stmt).scalar_one_or_none()
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    def get_balance(self, provider_id: str) -> int:
        return self.get_provider(provider_id).token_balance

    def record_transaction(
        self,
        provider_id: str,
        amount: int,
        type: TransactionType,
        description: str,
        request_id: Optional[str] = None,
    ) -> Transaction:
        """
        Apply a signed balance change and append it to the log.

        Runs inside the caller's transaction; nothing is visible to other
        sessions until the caller commits. Raises InvalidStateError if the
        resulting balance would be negative.
        """
        if amount == 0:
            raise InvalidInputError("Transaction amount must be non-zero")

        provider = self.get_provider(provider_id, lock=True)
        new_balance = provider.token_balance + amount
        if new_balance < 0:
            raise InvalidStateError(
                f"Balance of provider {provider_id} cannot go below zero "
                f"(balance {provider.token_balance}, amount {amount})"
            )

        provider.token_balance = new_balance
        record = TransactionRecord(
            provider_id=provider_id,
            type=type,
            amount=amount,
            balance_after=new_balance,
            description=description,
            request_id=request_id,
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            f"Ledger {type.value}: provider={provider_id} amount={amount:+d} "
            f"balance={new_balance} request={request_id}"
        )
        return Transaction.model_validate(record)

    def history(self, provider_id: str, limit: Optional[int] = None, offset: int = 0) -> list[Transaction]:
        self.get_provider(provider_id)
        if limit is None:
            limit = Config.HISTORY_PAGE_SIZE
        if limit < 1 or limit > HISTORY_MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {HISTORY_MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidInputError("offset must not be negative")

        rows = self.session.execute(
            select(TransactionRecord)
            .where(TransactionRecord.provider_id == provider_id)
            .order_by(TransactionRecord.id.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()
        return [Transaction.model_validate(r) for r in rows]

    def count_transactions(self, provider_id: str) -> int:
        return self.session.execute(
            select(func.count(TransactionRecord.id)).where(TransactionRecord.provider_id == provider_id)
        ).scalar_one()

    def audit(self, provider_id: str) -> LedgerAudit:
        """Recompute the balance from the log and walk the snapshot chain."""
        provider = self.get_provider(provider_id)
        rows = self.session.execute(
            select(TransactionRecord)
            .where(TransactionRecord.provider_id == provider_id)
            .order_by(TransactionRecord.id.asc())
        ).scalars().all()

        running = 0
        first_broken = None
        for row in rows:
            running += row.amount
            if row.balance_after != running and first_broken is None:
                first_broken = row.id

        consistent = first_broken is None and running == provider.token_balance and running >= 0
        if not consistent:
            logger.warning(
                f"Ledger audit failed for provider {provider_id}: cached={provider.token_balance} "
                f"sum={running} first_broken={first_broken}"
            )
        return LedgerAudit(
            provider_id=provider_id,
            cached_balance=provider.token_balance,
            ledger_sum=running,
            total_entries=len(rows),
            consistent=consistent,
            first_broken_transaction_id=first_broken,
        )
