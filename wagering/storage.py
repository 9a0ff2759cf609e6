"""
Wager entity store.

Records are plain dicts keyed by UUID, one table per entity. Every write goes
through ``transaction()``, which holds the store lock for the whole unit of
work and journals the previous version of each record it touches so the
unit can be undone if any step raises.
"""

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import UUID

from .config import Config
from .logger import setup_logger

logger = setup_logger(__name__)

DEMO_ADMIN_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
DEMO_ALICE_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
DEMO_BOB_ID = UUID("770e8400-e29b-41d4-a716-446655440002")


class InMemoryStorage:
    TABLES = (
        "users",
        "events",
        "entries",
        "mini_pools",
        "mini_pool_entries",
        "offers",
        "ledger_entries",
    )

    def __init__(self, seed: Optional[bool] = None):
        self.users: dict[UUID, dict] = {}
        self.events: dict[UUID, dict] = {}
        self.entries: dict[UUID, dict] = {}
        self.mini_pools: dict[UUID, dict] = {}
        self.mini_pool_entries: dict[UUID, dict] = {}
        self.offers: dict[UUID, dict] = {}
        self.ledger_entries: dict[UUID, dict] = {}

        self._lock = threading.RLock()
        self._journal: Optional[list[tuple[str, UUID, Optional[dict]]]] = None

        if seed is None:
            seed = Config.SEED_DEMO_DATA
        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)
        for user_id, username, is_admin in (
            (DEMO_ADMIN_ID, "house", True),
            (DEMO_ALICE_ID, "alice", False),
            (DEMO_BOB_ID, "bob", False),
        ):
            self.users[user_id] = {
                "id": user_id, "username": username,
                "balance": Config.STARTING_BALANCE,
                "is_admin": is_admin, "created_at": now,
            }

    def _table(self, table: str) -> dict[UUID, dict]:
        if table not in self.TABLES:
            raise KeyError(f"Unknown table {table!r}")
        return getattr(self, table)

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        """Run a unit of work atomically.

        Nested calls join the enclosing transaction; only the outermost one
        commits or rolls back.
        """
        with self._lock:
            if self._journal is not None:
                yield self
                return

            self._journal = []
            try:
                yield self
            except BaseException as exc:
                undone = self._rollback()
                if undone:
                    logger.warning(f"Rolled back {undone} write(s) after {type(exc).__name__}: {exc}")
                raise
            finally:
                self._journal = None

    def _rollback(self) -> int:
        journal = self._journal or []
        for table, record_id, previous in reversed(journal):
            rows = self._table(table)
            if previous is None:
                rows.pop(record_id, None)
            else:
                rows[record_id] = previous
        return len(journal)

    def get(self, table: str, record_id: UUID) -> Optional[dict]:
        with self._lock:
            record = self._table(table).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def find(self, table: str, **filters) -> list[dict]:
        """Equality-filtered query in insertion order (oldest record first)."""
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._table(table).values()
                if all(r.get(k) == v for k, v in filters.items())
            ]

    def put(self, table: str, record: dict) -> dict:
        with self.transaction():
            rows = self._table(table)
            record_id = record["id"]
            previous = rows.get(record_id)
            self._journal.append((table, record_id, copy.deepcopy(previous) if previous is not None else None))
            rows[record_id] = copy.deepcopy(record)
        return record
