# Overview: Row locking, retrying transactions, and ledger change detection.

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, NamedTuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

# Deadlocks, lock timeouts and optimistic-version conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch interleaved writers on SQLite.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. The session is rolled back
    before every retry so the next attempt re-reads committed state.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying transaction after %s (attempt %d of %d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Run func() as one unit of work: commit on success, roll back on any error.

    Retryable storage errors re-run func() from the start, so every check
    func() performs is repeated against freshly committed data.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
        except BaseException:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base, retry_on=retry_on)


class TransactionRunner:
    """
    withTransaction capability handed to services.

    Completion retries unique-key clashes too: two first-time upserts of the
    same (location, item) race on the insert, and the retry sees the row the
    other writer created.
    """

    def __init__(self, attempts: int = 3, backoff_base: float = 0.1):
        self.attempts = attempts
        self.backoff_base = backoff_base

    def __call__(self, func, *, retry_integrity_errors: bool = False):
        retry_on = RETRYABLE_ERRORS + (IntegrityError,) if retry_integrity_errors else RETRYABLE_ERRORS
        return run_in_transaction(
            func,
            attempts=self.attempts,
            backoff_base=self.backoff_base,
            retry_on=retry_on,
        )


class CountSnapshot(NamedTuple):
    """The system quantity a count line saw when it was written."""
    item_id: int
    location_id: int
    snapshot_quantity: int
    item_name: str | None = None


@dataclass(frozen=True)
class InventoryChange:
    """A ledger quantity that moved after the count line was written."""
    item_id: int
    location_id: int
    system_at_count: int
    system_now: int
    item_name: str | None = None

    @property
    def difference(self) -> int:
        return self.system_now - self.system_at_count

    def describe(self) -> str:
        label = self.item_name or f"Item {self.item_id}"
        return f"{label}: System quantity changed from {self.system_at_count} to {self.system_now}"

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "location_id": self.location_id,
            "system_at_count": self.system_at_count,
            "system_now": self.system_now,
            "difference": self.difference,
        }


def detect_inventory_changes(
    snapshots: Iterable[CountSnapshot],
    read_quantity: Callable[[int, int], int],
) -> list[InventoryChange]:
    """
    Compare each snapshot against the live ledger.

    read_quantity(location_id, item_id) must read the current value (not a
    cached one). Nothing is mutated; callers decide whether to block or warn.
    """
    changes = []
    for snapshot in snapshots:
        system_now = read_quantity(snapshot.location_id, snapshot.item_id)
        if system_now != snapshot.snapshot_quantity:
            changes.append(InventoryChange(
                item_id=snapshot.item_id,
                location_id=snapshot.location_id,
                system_at_count=snapshot.snapshot_quantity,
                system_now=system_now,
                item_name=snapshot.item_name,
            ))
    return changes
