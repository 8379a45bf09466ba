"""
Notification Dispatcher

Delivers the NotificationIntents produced by the policy engine, after the
sanction itself has been committed.

Delivery is fire-and-forget: every failure is logged and reported back as a
string, never raised. A sanction is durable whether or not its notice arrives.
"""
import logging
from uuid import uuid4
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import NotificationDB
from ...models.decisions import NotificationIntent, IntentKind
from ...timeutils import utcnow

logger = logging.getLogger(__name__)

# Operator alerts go to a dedicated channel so deployments can route them
alert_logger = logging.getLogger("shiftguard.alerts")


class NotificationDispatcher:
    """Outbox consumer for user notifications and operator alerts."""

    def __init__(self, db: Session):
        self.db = db

    def dispatch(self, intents: Iterable[NotificationIntent]) -> List[str]:
        """
        Deliver each intent independently.

        Returns:
            Error messages for intents that failed; empty when all succeeded
        """
        errors = []
        for intent in intents:
            error = self._deliver(intent)
            if error:
                errors.append(error)
        return errors

    def _deliver(self, intent: NotificationIntent) -> Optional[str]:
        try:
            if intent.kind == IntentKind.ADMIN_ALERT:
                self._send_admin_alert(intent)
            else:
                self._store_user_notification(intent)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to deliver {intent.kind.value} to {intent.user_id}: {e}")
            return f"{intent.kind.value}: {e}"
        except Exception as e:
            logger.exception(f"Unexpected failure delivering {intent.kind.value} to {intent.user_id}")
            return f"{intent.kind.value}: {e}"
        return None

    def _store_user_notification(self, intent: NotificationIntent) -> None:
        notification = NotificationDB(
            id=str(uuid4()),
            user_id=intent.user_id,
            type=intent.notification_type,
            title=intent.title,
            body=intent.body,
            action_url=intent.action_url,
            created_at=utcnow(),
        )
        self.db.add(notification)
        self.db.commit()
        logger.info(f"Notification stored for {intent.user_id}: {intent.title}")

    def _send_admin_alert(self, intent: NotificationIntent) -> None:
        alert_logger.warning(f"[ADMIN ALERT] {intent.title}: {intent.body}", extra={"alert": intent.metadata})
