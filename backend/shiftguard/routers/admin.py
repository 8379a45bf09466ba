"""
Shift Marketplace Policy Engine - Admin Router
Coordinator console for recording violations and reviewing standing.
Every sanction goes through PolicyEnforcementEngine - there is no direct write path.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import require_admin
from ..guards import store_unavailable_exception
from ..models.db_models import UserDB, ViolationKind, TrustEventType
from ..services.enforcement import (
    PolicyEnforcementEngine, TrustScoreService, StoreUnavailable, UnknownViolation,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ApplyViolationRequest(BaseModel):
    """Record a violation. The sanction itself is fixed by the policy rules."""
    violation: str = Field(..., description="Violation kind, e.g. no_show")
    resource_id: Optional[str] = Field(None, description="Job the violation relates to")
    metadata: Optional[Dict[str, Any]] = None


class RecordTrustEventRequest(BaseModel):
    """Record a standard (non-violation) trust event such as passport_verified."""
    event_type: TrustEventType
    resource_id: Optional[str] = None
    description: Optional[str] = None


class EnforcementLogEntry(BaseModel):
    id: str
    violation: str
    trust_score_impact: int
    effects: List[dict]
    resource_id: Optional[str] = None
    created_at: str


class StandingResponse(BaseModel):
    user_id: str
    trust_score: int
    active_policies: dict
    history: List[EnforcementLogEntry]


def _get_user_or_404(db: Session, user_id: str) -> UserDB:
    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/users/{user_id}/violations", response_model=dict)
async def apply_violation(
    user_id: str,
    request: ApplyViolationRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Apply the fixed sanction for a violation to a user."""
    _get_user_or_404(db, user_id)
    engine = PolicyEnforcementEngine(db)

    metadata = {**(request.metadata or {}), "reported_by": admin.id}
    try:
        result = engine.apply_policy(user_id, request.violation, request.resource_id, metadata)
    except UnknownViolation as e:
        raise HTTPException(
            status_code=400,
            detail=f"{e}. Must be one of: {', '.join(v.value for v in ViolationKind)}",
        )
    except StoreUnavailable:
        raise store_unavailable_exception()

    logger.info(f"Admin {admin.id} applied {request.violation} to {user_id}")
    return result.to_dict()


@router.post("/users/{user_id}/trust-events", response_model=dict)
async def record_trust_event(
    user_id: str,
    request: RecordTrustEventRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Record a standard trust event with its default impact."""
    _get_user_or_404(db, user_id)
    service = TrustScoreService(db)
    try:
        event = service.record_standard_event(
            user_id, request.event_type, request.resource_id, request.description,
            metadata={"reported_by": admin.id},
        )
        db.commit()
        score = service.get_score(user_id)
    except StoreUnavailable:
        db.rollback()
        raise store_unavailable_exception()

    return {"event_id": event.id, "impact": event.impact, "trust_score": score}


@router.post("/users/{user_id}/unblock", response_model=dict)
async def unblock_user(
    user_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Lift a block before its expiry."""
    _get_user_or_404(db, user_id)
    try:
        unblocked = PolicyEnforcementEngine(db).unblock_user(user_id)
    except StoreUnavailable:
        raise store_unavailable_exception()

    logger.info(f"Admin {admin.id} unblock request for {user_id}: {unblocked}")
    return {"user_id": user_id, "unblocked": unblocked}


@router.get("/users/{user_id}/standing", response_model=StandingResponse)
async def get_user_standing(
    user_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
):
    """Active policies, trust score and enforcement history for a user."""
    _get_user_or_404(db, user_id)
    engine = PolicyEnforcementEngine(db)
    try:
        policies = engine.get_active_policies(user_id)
        score = engine.trust.get_score(user_id)
        history = engine.get_enforcement_history(user_id)
    except StoreUnavailable:
        raise store_unavailable_exception()

    return StandingResponse(
        user_id=user_id,
        trust_score=score,
        active_policies=policies.to_dict(),
        history=[
            EnforcementLogEntry(
                id=entry.id,
                violation=entry.violation,
                trust_score_impact=entry.trust_score_impact,
                effects=entry.effects or [],
                resource_id=entry.resource_id,
                created_at=entry.created_at.isoformat(),
            )
            for entry in history
        ],
    )
