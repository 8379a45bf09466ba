"""
Action Audit Ledger

Append-only log of dispatched actions, read back only as windowed counts
for rate limiting.

Core Principles:
1. Entries are born after the guard allows an action, before the handler runs.
2. Append-only - no updates or deletes. Retention pruning lives outside the engine.
3. The ledger never decides. The guard reads counts, nothing else.
"""
import logging
from uuid import uuid4
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import ActionAuditLogDB, Action
from ...timeutils import utcnow
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


class ActionAuditLedger:
    """Append and count interface over action_audit_log."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        user_id: str,
        action: Action,
        resource_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ActionAuditLogDB:
        """
        Append an audit entry.

        Flushes without committing; the caller owns the transaction.
        """
        entry = ActionAuditLogDB(
            id=str(uuid4()),
            user_id=user_id,
            action=action.value,
            resource_id=resource_id,
            created_at=created_at or utcnow(),
        )
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to append audit entry for {user_id}/{action.value}: {e}")
            raise StoreUnavailable("action audit ledger unavailable") from e
        return entry

    def count_in_window(
        self,
        user_id: str,
        action: Action,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> int:
        """Count entries for (user, action) with window_start <= created_at <= window_end."""
        try:
            query = self.db.query(func.count(ActionAuditLogDB.id)).filter(
                ActionAuditLogDB.user_id == user_id,
                ActionAuditLogDB.action == action.value,
                ActionAuditLogDB.created_at >= window_start,
            )
            if window_end is not None:
                query = query.filter(ActionAuditLogDB.created_at <= window_end)
            return query.scalar() or 0
        except SQLAlchemyError as e:
            raise StoreUnavailable("action audit ledger unavailable") from e
