# Overview: Append-only audit sink for domain events.

from __future__ import annotations

import json

from ..extensions import db
from ..models import AuditLog


"""
Audit Sink Invariants

- Append-only: no updates or deletes of existing rows.
- Written in the caller's transaction (flush, never commit), so an event
  exists if and only if the change it describes was committed.
- changes/metadata are JSON objects; keep them small.
"""


class AuditSink:
    """record(event) is called once per state transition."""

    def record(
        self,
        *,
        practice_id: int,
        actor_id: int | None,
        entity_type: str,
        entity_id: int,
        action: str,
        changes: dict | None = None,
        metadata: dict | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            practice_id=practice_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=json.dumps(changes, default=str, sort_keys=True) if changes is not None else None,
            event_metadata=json.dumps(metadata, default=str, sort_keys=True) if metadata is not None else None,
        )
        db.session.add(entry)
        db.session.flush()  # ensures entry.id is assigned without committing
        return entry
