# backend/clinicstock/services/stock_count_service.py
"""
Stock count service: physical counts reconciled against the inventory ledger.

WHY: Regular physical counts keep the ledger honest. Staff count a location,
each line snapshots the system quantity at the moment it is written, and on
completion the ledger is set to the counted values in one transaction.

LIFECYCLE:
1. IN_PROGRESS: lines being counted (add, re-count, update, remove)
2. COMPLETED: variances applied (or recorded only); terminal
3. CANCELLED: abandoned before completion; terminal, ledger untouched

CONCURRENCY:
The ledger may move while a count is open (receipts, transfers, other
adjustments). Completion compares every line's snapshot with the live
quantity twice: once before the transaction as an early rejection, and again
inside it against row-locked, version-checked records. A mismatch blocks
STAFF with a ConcurrencyError; an ADMIN may override it explicitly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    BusinessRuleViolationError,
    ConcurrencyError,
    ConflictError,
    ForbiddenError,
    UnauthorizedError,
    ValidationError,
    translate_integrity_error,
)
from ..extensions import db
from ..models import StockCountLine, StockCountSession, StockCountStatus
from ..permissions import PracticeRole, RequestContext
from ..time_utils import utcnow
from ..validation import (
    LINE_NOTES_MAX_LENGTH,
    SESSION_NOTES_MAX_LENGTH,
    coerce_id,
    coerce_int,
    normalize_notes,
    validate_counted_quantity,
)
from .audit_service import AuditSink
from .concurrency import CountSnapshot, InventoryChange, TransactionRunner, detect_inventory_changes
from .inventory_ledger import InventoryLedger
from .notification_service import LowStockChecker
from .permission_service import PermissionGate
from .tenant_service import (
    require_item_in_practice,
    require_line_in_practice,
    require_location_in_practice,
    require_session_in_practice,
    scoped_query,
)


logger = logging.getLogger(__name__)

STOCK_COUNT_REASON = "Stock Count"
MAX_PAGE_LIMIT = 200


@dataclass(frozen=True)
class LineResult:
    line_id: int
    variance: int

    def to_dict(self) -> dict:
        return {"line_id": self.line_id, "variance": self.variance}


@dataclass(frozen=True)
class CompletionResult:
    adjusted_items: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"adjusted_items": self.adjusted_items, "warnings": list(self.warnings)}


class StockCountService:
    """
    Count session/line lifecycle and the completion orchestrator.

    Collaborators are injected; build_stock_count_service() wires the
    default ones for a single request.
    """

    def __init__(
        self,
        *,
        ledger: InventoryLedger,
        audit: AuditSink,
        permissions: PermissionGate,
        low_stock: LowStockChecker,
        transaction,
        strict_notifications: bool = False,
        default_page_limit: int = 50,
    ):
        self.ledger = ledger
        self.audit = audit
        self.permissions = permissions
        self.low_stock = low_stock
        self.transaction = transaction
        self.strict_notifications = strict_notifications
        self.default_page_limit = default_page_limit

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, actor: RequestContext, location_id, notes=None) -> StockCountSession:
        """
        Open a new IN_PROGRESS count for one location.

        Raises:
            ForbiddenError: actor below STAFF
            UnauthorizedError: actor has no user id (system actors cannot own counts)
            NotFoundError: location missing or owned by another practice
        """
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        if actor.user_id is None:
            raise UnauthorizedError("A signed-in user is required to start a stock count")

        location_id = coerce_id(location_id, "location_id")
        notes = normalize_notes(notes, max_length=SESSION_NOTES_MAX_LENGTH)

        def _op():
            location = require_location_in_practice(location_id, actor.practice_id)

            count_session = StockCountSession(
                practice_id=actor.practice_id,
                location_id=location.id,
                status=StockCountStatus.IN_PROGRESS,
                notes=notes,
                created_by_id=actor.user_id,
            )
            db.session.add(count_session)
            db.session.flush()  # Get ID

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountSession",
                entity_id=count_session.id,
                action="CREATED",
                changes={"location_id": location.id, "location_name": location.name, "notes": notes},
            )
            return count_session

        return self._run(_op)

    def cancel_session(self, actor: RequestContext, session_id) -> StockCountSession:
        """Abandon an IN_PROGRESS count. The ledger is never touched."""
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        session_id = coerce_id(session_id, "session_id")

        def _op():
            count_session = require_session_in_practice(session_id, actor.practice_id, lock=True)
            if count_session.status != StockCountStatus.IN_PROGRESS:
                raise BusinessRuleViolationError("Can only cancel in-progress sessions")

            count_session.status = StockCountStatus.CANCELLED
            db.session.flush()

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountSession",
                entity_id=count_session.id,
                action="CANCELLED",
                changes={"line_count": len(count_session.lines)},
                metadata={"location_id": count_session.location_id},
            )
            return count_session

        return self._run(_op)

    def delete_session(self, actor: RequestContext, session_id) -> None:
        """Hard-delete a session that never completed, with its lines (ADMIN+)."""
        self.permissions.require_minimum_role(actor, PracticeRole.ADMIN)
        session_id = coerce_id(session_id, "session_id")

        def _op():
            count_session = require_session_in_practice(session_id, actor.practice_id, lock=True)
            if count_session.status == StockCountStatus.COMPLETED:
                raise BusinessRuleViolationError("Cannot delete completed session")

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountSession",
                entity_id=count_session.id,
                action="DELETED",
                changes={"status": count_session.status, "line_count": len(count_session.lines)},
                metadata={"location_id": count_session.location_id},
            )
            db.session.delete(count_session)
            db.session.flush()

        self._run(_op)

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_or_update_line(self, actor: RequestContext, session_id, item_id, counted_quantity, notes=None) -> LineResult:
        """
        Record a count for one item; re-counting an item updates its line.

        The system quantity is read from the ledger and stored as the line's
        snapshot. Nothing is written to the ledger.
        """
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        session_id = coerce_id(session_id, "session_id")
        item_id = coerce_id(item_id, "item_id")
        counted_quantity = validate_counted_quantity(counted_quantity)
        notes = normalize_notes(notes, max_length=LINE_NOTES_MAX_LENGTH)

        def _op():
            count_session = require_session_in_practice(session_id, actor.practice_id, lock=True)
            if count_session.status != StockCountStatus.IN_PROGRESS:
                raise BusinessRuleViolationError("Cannot edit completed session")

            item = require_item_in_practice(item_id, actor.practice_id)

            system_quantity = self.ledger.get_quantity(count_session.location_id, item.id)

            line = db.session.query(StockCountLine).filter_by(
                session_id=count_session.id,
                item_id=item.id,
            ).first()

            if line is not None:
                variance = line.recount(counted_quantity, system_quantity)
                # Keep the earlier note unless a new one was given
                if notes:
                    line.notes = notes
                action = "UPDATED"
            else:
                variance = counted_quantity - system_quantity
                line = StockCountLine(
                    session_id=count_session.id,
                    item_id=item.id,
                    counted_quantity=counted_quantity,
                    system_quantity=system_quantity,
                    variance=variance,
                    notes=notes,
                )
                db.session.add(line)
                action = "ADDED"

            db.session.flush()
            self._hold_open_session(count_session)

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountLine",
                entity_id=line.id,
                action=action,
                changes={
                    "item_id": item.id,
                    "item_name": item.name,
                    "counted_quantity": counted_quantity,
                    "system_quantity": system_quantity,
                    "variance": variance,
                },
                metadata={"session_id": count_session.id},
            )
            return LineResult(line_id=line.id, variance=variance)

        # Two first counts of the same item race on the unique line key;
        # the retry finds the winner's line and updates it.
        return self._run(_op, retry_integrity_errors=True)

    def update_line(self, actor: RequestContext, line_id, counted_quantity, notes=None) -> LineResult:
        """
        Change the counted value of an existing line.

        Variance is recomputed against the line's stored snapshot; the ledger
        is deliberately not re-read so an edit never re-baselines the count.
        """
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        line_id = coerce_id(line_id, "line_id")
        counted_quantity = validate_counted_quantity(counted_quantity)
        notes = normalize_notes(notes, max_length=LINE_NOTES_MAX_LENGTH)

        def _op():
            line = require_line_in_practice(line_id, actor.practice_id)
            count_session = require_session_in_practice(line.session_id, actor.practice_id, lock=True)
            if count_session.status != StockCountStatus.IN_PROGRESS:
                raise BusinessRuleViolationError("Cannot edit completed session")

            variance = line.recount(counted_quantity)
            if notes:
                line.notes = notes
            db.session.flush()
            self._hold_open_session(count_session)

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountLine",
                entity_id=line.id,
                action="UPDATED",
                changes={
                    "item_id": line.item_id,
                    "item_name": line.item.name,
                    "counted_quantity": counted_quantity,
                    "system_quantity": line.system_quantity,
                    "variance": variance,
                },
                metadata={"session_id": line.session_id},
            )
            return LineResult(line_id=line.id, variance=variance)

        return self._run(_op)

    def remove_line(self, actor: RequestContext, line_id) -> None:
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        line_id = coerce_id(line_id, "line_id")

        def _op():
            line = require_line_in_practice(line_id, actor.practice_id)
            count_session = require_session_in_practice(line.session_id, actor.practice_id, lock=True)
            if count_session.status != StockCountStatus.IN_PROGRESS:
                raise BusinessRuleViolationError("Cannot edit completed session")

            self.audit.record(
                practice_id=actor.practice_id,
                actor_id=actor.user_id,
                entity_type="StockCountLine",
                entity_id=line.id,
                action="REMOVED",
                changes={"item_id": line.item_id, "item_name": line.item.name},
                metadata={"session_id": line.session_id},
            )
            db.session.delete(line)
            db.session.flush()
            self._hold_open_session(count_session)

        self._run(_op)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_session(
        self,
        actor: RequestContext,
        session_id,
        apply_adjustments: bool,
        admin_override: bool = False,
    ) -> CompletionResult:
        """
        Finish a count, optionally reconciling the ledger to the counted values.

        With apply_adjustments=False only the status changes (count for audit
        only). With apply_adjustments=True every non-zero-variance line sets
        the ledger to its counted quantity and writes a StockAdjustment, all
        in one transaction together with the status change.

        Raises:
            ForbiddenError: actor below STAFF, or admin_override without ADMIN
            ValidationError: session has no lines, or a resulting quantity
                would be negative
            BusinessRuleViolationError: session is not IN_PROGRESS
            ConcurrencyError: the ledger moved since lines were counted and
                no admin override was given
        """
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        if admin_override:
            self.permissions.require_minimum_role(
                actor, PracticeRole.ADMIN, action="STOCK_COUNT_ADMIN_OVERRIDE"
            )
        session_id = coerce_id(session_id, "session_id")
        apply_adjustments = bool(apply_adjustments)

        count_session = require_session_in_practice(session_id, actor.practice_id)
        self._require_completable(count_session)

        if apply_adjustments:
            # Early rejection before taking locks; repeated authoritatively below
            changes = detect_inventory_changes(self._snapshots(count_session), self.ledger.get_quantity)
            self._gate_changes(actor, count_session, changes, admin_override)

        def _op():
            return self._complete_in_transaction(actor, session_id, apply_adjustments, admin_override)

        result = self._run(_op, retry_integrity_errors=apply_adjustments)

        logger.info(
            "Stock count %s completed by user %s (adjustments_applied=%s, adjusted_items=%d)",
            session_id, actor.user_id, apply_adjustments, result.adjusted_items,
        )
        return result

    def _complete_in_transaction(
        self,
        actor: RequestContext,
        session_id: int,
        apply_adjustments: bool,
        admin_override: bool,
    ) -> CompletionResult:
        count_session = require_session_in_practice(session_id, actor.practice_id, lock=True)
        self._require_completable(count_session)

        lines = list(count_session.lines)
        location_id = count_session.location_id
        warnings: list[str] = []
        adjusted_items = 0

        if apply_adjustments:
            records = self.ledger.lock_records(location_id, [line.item_id for line in lines])

            def _locked_quantity(_location_id, item_id):
                record = records.get(item_id)
                return record.quantity if record is not None else 0

            changes = detect_inventory_changes(self._snapshots(count_session), _locked_quantity)
            warnings = self._gate_changes(actor, count_session, changes, admin_override)

            to_apply = [line for line in lines if line.variance != 0]

            # Pre-flight: no write happens unless every resulting quantity is valid
            self._validate_resulting_quantities(to_apply)

            for line in to_apply:
                existing = records.get(line.item_id)
                reorder_point = existing.reorder_point if existing is not None else None

                self.ledger.upsert_quantity(
                    location_id,
                    line.item_id,
                    line.counted_quantity,
                    preserve_reorder_settings=True,
                    existing=existing,
                )
                self.ledger.create_adjustment(
                    practice_id=actor.practice_id,
                    location_id=location_id,
                    item_id=line.item_id,
                    quantity=line.variance,
                    reason=STOCK_COUNT_REASON,
                    note=self._adjustment_note(count_session, line),
                    created_by_id=actor.user_id,
                )
                self._notify_low_stock(
                    practice_id=actor.practice_id,
                    item_id=line.item_id,
                    location_id=location_id,
                    new_quantity=line.counted_quantity,
                    reorder_point=reorder_point,
                )
                adjusted_items += 1

        count_session.status = StockCountStatus.COMPLETED
        count_session.completed_at = utcnow()
        db.session.flush()

        self.audit.record(
            practice_id=actor.practice_id,
            actor_id=actor.user_id,
            entity_type="StockCountSession",
            entity_id=count_session.id,
            action="COMPLETED",
            changes={
                "location_id": location_id,
                "location_name": count_session.location.name if count_session.location else "",
                "line_count": len(lines),
                "adjustments_applied": apply_adjustments,
                "adjusted_item_count": adjusted_items,
                "total_variance": sum(abs(line.variance) for line in lines),
                "admin_override": bool(admin_override and warnings),
                "concurrency_warnings": warnings,
                "items": [
                    {
                        "item_id": line.item_id,
                        "item_name": line.item.name,
                        "system_quantity": line.system_quantity,
                        "counted_quantity": line.counted_quantity,
                        "variance": line.variance,
                    }
                    for line in lines
                ],
            },
            metadata={"location_id": location_id},
        )

        return CompletionResult(adjusted_items=adjusted_items, warnings=warnings)

    def _require_completable(self, count_session: StockCountSession) -> None:
        if count_session.status != StockCountStatus.IN_PROGRESS:
            raise BusinessRuleViolationError("Session is not in progress")
        if not count_session.lines:
            raise ValidationError("Session must have at least one line")

    @staticmethod
    def _hold_open_session(count_session: StockCountSession) -> None:
        """
        Bump the session version, but only while it is still IN_PROGRESS.

        A completion or cancel that committed after our status check makes
        this match no row, and the line write is rolled back with the
        transaction. A completion still in flight sees the new version and
        fails as stale, so its retry picks up this line.
        """
        table = StockCountSession.__table__
        result = db.session.execute(
            table.update()
            .where(table.c.id == count_session.id)
            .where(table.c.status == StockCountStatus.IN_PROGRESS)
            .values(version_id=table.c.version_id + 1)
        )
        if result.rowcount != 1:
            raise BusinessRuleViolationError("Cannot edit completed session")
        db.session.expire(count_session, ["version_id"])

    @staticmethod
    def _validate_resulting_quantities(lines) -> None:
        """The ledger is set to counted_quantity; none may be negative."""
        negative = [line for line in lines if line.counted_quantity < 0]
        if negative:
            names = ", ".join(line.item.name for line in negative)
            raise ValidationError(f"Adjustment would make inventory negative for: {names}")

    def _gate_changes(
        self,
        actor: RequestContext,
        count_session: StockCountSession,
        changes: list[InventoryChange],
        admin_override: bool,
    ) -> list[str]:
        """Block on detected changes unless an ADMIN explicitly overrides."""
        if not changes:
            return []

        if not admin_override:
            logger.warning(
                "Stock count %s blocked: inventory changed for %d item(s)",
                count_session.id, len(changes),
            )
            raise ConcurrencyError(changes)

        if not actor.has_role(PracticeRole.ADMIN):
            raise ForbiddenError("Only an admin can override inventory changes made during a count")

        logger.warning(
            "Stock count %s: admin %s overrode inventory changes for %d item(s)",
            count_session.id, actor.user_id, len(changes),
        )
        return [change.describe() for change in changes]

    def _notify_low_stock(self, **params) -> None:
        """
        Best-effort by default: a failing check rolls back only its savepoint.

        In strict mode the failure propagates and the whole completion rolls back.
        """
        if self.strict_notifications:
            self.low_stock.check_and_notify(**params)
            return

        try:
            with db.session.begin_nested():
                self.low_stock.check_and_notify(**params)
        except Exception:
            logger.warning(
                "Low-stock check failed for item %s at location %s; completion continues",
                params.get("item_id"), params.get("location_id"),
                exc_info=True,
            )

    @staticmethod
    def _snapshots(count_session: StockCountSession) -> list[CountSnapshot]:
        return [
            CountSnapshot(
                item_id=line.item_id,
                location_id=count_session.location_id,
                snapshot_quantity=line.system_quantity,
                item_name=line.item.name if line.item else None,
            )
            for line in count_session.lines
        ]

    @staticmethod
    def _adjustment_note(count_session: StockCountSession, line: StockCountLine) -> str:
        note = f"Count session #{count_session.id}"
        if line.notes:
            note = f"{note} - {line.notes}"
        return note

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, actor: RequestContext, session_id) -> dict:
        self.permissions.require_minimum_role(actor, PracticeRole.VIEWER)
        session_id = coerce_id(session_id, "session_id")
        count_session = require_session_in_practice(session_id, actor.practice_id)
        return count_session.to_dict(include_lines=True)

    def list_sessions(self, actor: RequestContext, page=1, limit=None, status: str | None = None) -> list[dict]:
        """Newest first, paginated; limit is capped at MAX_PAGE_LIMIT."""
        self.permissions.require_minimum_role(actor, PracticeRole.VIEWER)

        page = coerce_int(page, "page") if page is not None else 1
        limit = coerce_int(limit, "limit") if limit is not None else self.default_page_limit
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        limit = min(limit, MAX_PAGE_LIMIT)

        sessions = (
            self._sessions_query(actor, status)
            .order_by(StockCountSession.created_at.desc(), StockCountSession.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [count_session.to_dict() for count_session in sessions]

    def count_sessions(self, actor: RequestContext, status: str | None = None) -> int:
        """Total sessions matching the same filter list_sessions pages through."""
        self.permissions.require_minimum_role(actor, PracticeRole.VIEWER)
        return self._sessions_query(actor, status).count()

    @staticmethod
    def _sessions_query(actor: RequestContext, status: str | None):
        query = scoped_query(StockCountSession, actor.practice_id)
        if status:
            status = status.strip().upper()
            if status not in (StockCountStatus.IN_PROGRESS, StockCountStatus.COMPLETED, StockCountStatus.CANCELLED):
                raise ValidationError(f"Invalid status: {status}")
            query = query.filter(StockCountSession.status == status)
        return query

    def get_expected_items(self, actor: RequestContext, session_id) -> list[dict]:
        """Stocked items at the session's location that have not been counted yet."""
        self.permissions.require_minimum_role(actor, PracticeRole.VIEWER)
        session_id = coerce_id(session_id, "session_id")
        count_session = require_session_in_practice(session_id, actor.practice_id)

        counted_item_ids = {line.item_id for line in count_session.lines}
        expected = [
            {
                "item_id": record.item_id,
                "item_name": record.item.name,
                "item_sku": record.item.sku,
                "unit": record.item.unit,
                "system_quantity": record.quantity,
            }
            for record in self.ledger.list_location_records(count_session.location_id)
            if record.item_id not in counted_item_ids and record.item.is_active
        ]
        return sorted(expected, key=lambda entry: (entry["item_name"].lower(), entry["item_id"]))

    def detect_session_changes(self, actor: RequestContext, session_id) -> list[InventoryChange]:
        """Live conflict preview for the completion dialog; read-only."""
        self.permissions.require_minimum_role(actor, PracticeRole.STAFF)
        session_id = coerce_id(session_id, "session_id")
        count_session = require_session_in_practice(session_id, actor.practice_id)
        return detect_inventory_changes(self._snapshots(count_session), self.ledger.get_quantity)

    # ------------------------------------------------------------------

    def _run(self, op, *, retry_integrity_errors: bool = False):
        """Run op in a transaction and map storage failures onto domain errors."""
        try:
            return self.transaction(op, retry_integrity_errors=retry_integrity_errors)
        except IntegrityError as exc:
            raise translate_integrity_error(exc) from exc
        except (StaleDataError, OperationalError) as exc:
            raise ConflictError("The record was modified by another request; please retry") from exc


def build_stock_count_service(config=None) -> StockCountService:
    """
    Wire a service with fresh collaborators.

    Call once per request (or per CLI command); nothing is cached at module
    level.
    """
    if config is None:
        config = current_app.config

    return StockCountService(
        ledger=InventoryLedger(),
        audit=AuditSink(),
        permissions=PermissionGate(),
        low_stock=LowStockChecker(),
        transaction=TransactionRunner(attempts=config.get("TRANSACTION_RETRY_ATTEMPTS", 3)),
        strict_notifications=config.get("LOW_STOCK_NOTIFICATIONS_STRICT", False),
        default_page_limit=config.get("STOCK_COUNT_PAGE_LIMIT", 50),
    )
