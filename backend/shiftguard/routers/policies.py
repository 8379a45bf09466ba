"""
Policy API Routes

Read-only views of the caller's own standing and trust score, plus a
dry-run decision endpoint for the frontend to pre-check actions.
"""
from typing import Optional, List
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from ..guards import store_unavailable_exception
from ..models.db_models import Action, UserDB
from ..services.enforcement import (
    ActionGuard, PolicyEnforcementEngine, TrustScoreService, StoreUnavailable, Unauthenticated,
)
from ..services.enforcement.trust_score import (
    get_trust_score_category, get_trust_score_recommendations,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/policies", tags=["policies"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CheckActionRequest(BaseModel):
    """Dry-run an action without recording it."""
    action: Action = Field(..., description="Action to check")
    resource_id: Optional[str] = Field(None, description="Job the action targets")


class TrustEventEntry(BaseModel):
    id: str
    event_type: str
    impact: int
    description: Optional[str]
    created_at: str


class TrustScoreResponse(BaseModel):
    score: int
    level: str
    label: str
    description: str
    recommendations: List[str]
    history: List[TrustEventEntry]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/me", response_model=dict)
async def get_my_policies(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Sanctions currently in force for the caller."""
    engine = PolicyEnforcementEngine(db)
    try:
        return engine.get_active_policies(current_user.id).to_dict()
    except StoreUnavailable:
        raise store_unavailable_exception()


@router.get("/me/trust", response_model=TrustScoreResponse)
async def get_my_trust_score(
    history_limit: int = 20,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Trust score with category, recommendations and recent history."""
    service = TrustScoreService(db)
    try:
        score = service.get_score(current_user.id)
        events = service.get_history(current_user.id, limit=history_limit)
    except StoreUnavailable:
        raise store_unavailable_exception()

    category = get_trust_score_category(score)
    return TrustScoreResponse(
        score=score,
        level=category["level"],
        label=category["label"],
        description=category["description"],
        recommendations=get_trust_score_recommendations(score, current_user.role),
        history=[
            TrustEventEntry(
                id=e.id,
                event_type=e.event_type,
                impact=e.impact,
                description=e.description,
                created_at=e.created_at.isoformat(),
            )
            for e in events
        ],
    )


@router.post("/check", response_model=dict)
async def check_action(
    request: CheckActionRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """
    Evaluate the guard without recording an audit entry.

    A denial is a normal 200 response here; only the guarded routes turn it into a 403.
    """
    try:
        decision = ActionGuard(db).can_perform_action(
            current_user.id, request.action, request.resource_id
        )
    except Unauthenticated:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    except StoreUnavailable:
        raise store_unavailable_exception()

    return decision.to_dict()
