"""
Shift Marketplace Policy Engine - Action Guard Dependency

Request-wrapping adapter around ActionGuard. Order is fixed:

    authenticate -> resolve resource id -> decide -> record -> execute

A denial becomes a structured 403; an allow appends an audit entry and
commits it before the route handler runs.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import get_current_user
from .database import get_db
from .models.db_models import Action, UserDB
from .models.decisions import ActionDecision
from .services.enforcement import (
    ActionAuditLedger, ActionGuard, StoreUnavailable, Unauthenticated,
)

logger = logging.getLogger(__name__)


@dataclass
class GuardedAction:
    """Handed to the route handler once the action is allowed and recorded."""
    user: UserDB
    action: Action
    resource_id: Optional[str]
    decision: ActionDecision


def store_unavailable_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Policy store unavailable. Try again later.",
    )


def require_action(action: Action, resource_param: Optional[str] = "job_id"):
    """
    Build a dependency that gates a route on `action`.

    Args:
        action: The action the route performs
        resource_param: Path parameter holding the resource id, or None
    """

    async def dependency(
        request: Request,
        db: Session = Depends(get_db),
        current_user: UserDB = Depends(get_current_user),
    ) -> GuardedAction:
        resource_id = request.path_params.get(resource_param) if resource_param else None

        try:
            decision = ActionGuard(db).can_perform_action(current_user.id, action, resource_id)
        except Unauthenticated:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        except StoreUnavailable as e:
            logger.error(f"Guard lookup failed for {current_user.id}/{action.value}: {e}")
            raise store_unavailable_exception()

        if not decision.allowed:
            logger.warning(
                f"Action denied: user={current_user.id} action={action.value} "
                f"resource={resource_id} blocked_by={decision.blocked_by.value}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": decision.reason,
                    "blocked_by": decision.blocked_by.value,
                    "metadata": decision.metadata,
                },
            )

        try:
            ActionAuditLedger(db).append(current_user.id, action, resource_id)
            db.commit()
        except (StoreUnavailable, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Audit append failed for {current_user.id}/{action.value}: {e}")
            raise store_unavailable_exception()

        logger.info(f"Action allowed: user={current_user.id} action={action.value} resource={resource_id}")
        return GuardedAction(
            user=current_user,
            action=action,
            resource_id=resource_id,
            decision=decision,
        )

    return dependency
