"""
Ledger: the sole authority over user balances.

Balances live on the user record; every movement also appends an immutable
journal row carrying the balance after the movement.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .config import Config
from .errors import InsufficientFundsError, InvalidAmountError, NotFoundError
from .logger import setup_logger
from .models import (
    EntryType,
    LedgerEntry,
    LedgerHistoryResponse,
    LedgerReason,
    UserAccount,
    UserBalance,
    to_money,
)
from .storage import InMemoryStorage

logger = setup_logger(__name__)


class Ledger:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def get_account(self, user_id: UUID) -> UserAccount:
        user_data = self.storage.get("users", user_id)
        if not user_data:
            raise NotFoundError(f"User {user_id} not found")
        return UserAccount(**user_data)

    def debit(
        self,
        user_id: UUID,
        amount,
        reason: LedgerReason,
        reference_id: Optional[UUID] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Debit amount must be positive, got {amount}")

        with self.storage.transaction():
            user_data = self._load_user(user_id)
            if user_data["balance"] < amount:
                raise InsufficientFundsError(
                    f"Insufficient balance: {user_data['balance']} available, {amount} required"
                )
            return self._apply(user_data, EntryType.DEBIT, amount, reason, reference_id, description)

    def credit(
        self,
        user_id: UUID,
        amount,
        reason: LedgerReason,
        reference_id: Optional[UUID] = None,
        description: Optional[str] = None,
    ) -> Optional[LedgerEntry]:
        """Credit a user. Zero credits are valid and leave no journal row."""
        amount = to_money(amount)
        if amount < 0:
            raise InvalidAmountError(f"Credit amount must not be negative, got {amount}")

        with self.storage.transaction():
            user_data = self._load_user(user_id)
            if amount == 0:
                return None
            return self._apply(user_data, EntryType.CREDIT, amount, reason, reference_id, description)

    def get_balance(self, user_id: UUID) -> UserBalance:
        account = self.get_account(user_id)
        entries = self.storage.find("ledger_entries", user_id=user_id)
        return UserBalance(
            user_id=user_id,
            username=account.username,
            current_balance=account.balance,
            currency=Config.CURRENCY,
            total_entries=len(entries),
            last_transaction_at=entries[-1]["created_at"] if entries else None,
        )

    def get_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self.get_account(user_id)
        all_entries = [LedgerEntry(**e) for e in self.storage.find("ledger_entries", user_id=user_id)]
        all_entries.reverse()
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=account.balance,
        )

    def _load_user(self, user_id: UUID) -> dict:
        user_data = self.storage.get("users", user_id)
        if not user_data:
            raise NotFoundError(f"User {user_id} not found")
        return user_data

    def _apply(
        self,
        user_data: dict,
        entry_type: EntryType,
        amount: Decimal,
        reason: LedgerReason,
        reference_id: Optional[UUID],
        description: Optional[str],
    ) -> LedgerEntry:
        signed = amount if entry_type == EntryType.CREDIT else -amount
        new_balance = user_data["balance"] + signed
        user_data["balance"] = new_balance
        self.storage.put("users", user_data)

        entry_data = {
            "id": uuid4(),
            "user_id": user_data["id"],
            "entry_type": entry_type,
            "amount": amount,
            "balance_after": new_balance,
            "reason": reason,
            "reference_id": reference_id,
            "description": description or reason.value.replace("_", " ").capitalize(),
            "created_at": datetime.now(timezone.utc),
        }
        self.storage.put("ledger_entries", entry_data)

        logger.info(f"{entry_type.value} {amount} {reason.value} for user {user_data['id']} (balance {new_balance})")
        return LedgerEntry(**entry_data)
