"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Expired sanction sweep.
"""
import os
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..guards import store_unavailable_exception
from ..services.enforcement import PolicyEnforcementEngine, StoreUnavailable


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/policy-sweep", response_model=dict)
async def run_policy_sweep(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Clear expired blocks, restrictions, prepayment and review flags.

    System-automatic - safe to run repeatedly or concurrently.
    """
    engine = PolicyEnforcementEngine(db)

    try:
        result = engine.sweep_expired()
    except StoreUnavailable:
        raise store_unavailable_exception()

    return {
        "task": "policy_sweep",
        "run_date": datetime.now(timezone.utc).isoformat(),
        **result,
    }
