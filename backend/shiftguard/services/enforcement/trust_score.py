"""
Trust Score Service

Bounded reputation per user derived from the append-only trust_events ledger.

Score = TRUST_SCORE_BASELINE + SUM(impact), clamped to [TRUST_SCORE_MIN, TRUST_SCORE_MAX].

Key behaviors:
- get_score() reads the ledger on every call; there is no process-level cache.
- record_event() appends one row and writes the recomputed score through to
  the standing record cache. It never notifies - that is the policy engine's job.
- Concurrent appends for the same user are safe: the score is a SUM over rows,
  never a read-modify-write counter.
"""
import logging
from datetime import datetime
from uuid import uuid4
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    StandingRecordDB, TrustEventDB, TrustEventType, TrustEventSeverity, ViolationKind, UserRole,
)
from ...timeutils import utcnow
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)


# =============================================================================
# SCORE CONFIGURATION
# =============================================================================

TRUST_SCORE_BASELINE = 100
TRUST_SCORE_MIN = 0
TRUST_SCORE_MAX = 100

# Default impacts for events recorded outside the policy engine.
# Violations applied through PolicyEnforcementEngine always use the rule's impact.
TRUST_EVENT_IMPACT = {
    # Client positive
    TrustEventType.PAID_ON_TIME: {"impact": 5, "severity": TrustEventSeverity.LOW},
    TrustEventType.COMPLETED_JOB_CLIENT: {"impact": 2, "severity": TrustEventSeverity.LOW},
    TrustEventType.COMPANY_VERIFIED: {"impact": 20, "severity": TrustEventSeverity.LOW},
    # Worker positive
    TrustEventType.COMPLETED_JOB_WORKER: {"impact": 2, "severity": TrustEventSeverity.LOW},
    TrustEventType.POSITIVE_RATING: {"impact": 5, "severity": TrustEventSeverity.LOW},
    TrustEventType.PASSPORT_VERIFIED: {"impact": 10, "severity": TrustEventSeverity.LOW},
    # Negative
    TrustEventType.DISPUTE_LOST_WORKER: {"impact": -15, "severity": TrustEventSeverity.HIGH},
}

TRUST_SCORE_CATEGORIES = [
    # (min score, level, label, description)
    (80, "excellent", "Excellent reputation", "Full access to all features"),
    (50, "good", "Good reputation", "Some restrictions may apply"),
    (30, "warning", "Low reputation", "Strict limits, actions may be moderated"),
    (TRUST_SCORE_MIN, "critical", "Critically low", "Most actions are unavailable"),
]


def clamp_score(raw: int) -> int:
    return max(TRUST_SCORE_MIN, min(TRUST_SCORE_MAX, raw))


def severity_for_impact(impact: int) -> TrustEventSeverity:
    if impact <= -20:
        return TrustEventSeverity.HIGH
    if impact <= -10:
        return TrustEventSeverity.MEDIUM
    return TrustEventSeverity.LOW


class TrustScoreService:
    """Reads and appends to the trust event ledger."""

    def __init__(self, db: Session):
        self.db = db

    def get_score(self, user_id: str) -> int:
        """Baseline plus the sum of all recorded impacts, clamped to bounds."""
        try:
            total = self.db.query(func.coalesce(func.sum(TrustEventDB.impact), 0)).filter(
                TrustEventDB.user_id == user_id
            ).scalar()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read trust score for {user_id}: {e}")
            raise StoreUnavailable("trust score store unavailable") from e
        return clamp_score(TRUST_SCORE_BASELINE + int(total or 0))

    def record_event(
        self,
        user_id: str,
        kind: Any,
        impact: int,
        resource_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        severity: Optional[TrustEventSeverity] = None,
        created_at: Optional[datetime] = None,
    ) -> TrustEventDB:
        """
        Append a trust event and refresh the cached score.

        Flushes without committing so the policy engine can apply effects
        in the same transaction.

        Args:
            user_id: User the event is about
            kind: TrustEventType or ViolationKind
            impact: Signed score delta
            resource_id: Optional job the event relates to
            description: Human readable description
            metadata: Free-form context
            created_at: Event time, defaults to now

        Returns:
            The created trust event
        """
        kind_value = kind.value if isinstance(kind, (TrustEventType, ViolationKind)) else str(kind)
        event = TrustEventDB(
            id=str(uuid4()),
            user_id=user_id,
            event_type=kind_value,
            severity=(severity or severity_for_impact(impact)).value,
            impact=impact,
            resource_id=resource_id,
            description=description,
            event_metadata=metadata or {},
            created_at=created_at or utcnow(),
        )
        try:
            self.db.add(event)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record trust event {kind_value} for {user_id}: {e}")
            raise StoreUnavailable("trust event ledger unavailable") from e

        self._refresh_cache(user_id)
        return event

    def record_standard_event(
        self,
        user_id: str,
        kind: TrustEventType,
        resource_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TrustEventDB:
        """Record an event with its default impact from TRUST_EVENT_IMPACT."""
        config = TRUST_EVENT_IMPACT[kind]
        return self.record_event(
            user_id,
            kind,
            config["impact"],
            resource_id=resource_id,
            description=description,
            metadata=metadata,
            severity=config["severity"],
        )

    def get_history(self, user_id: str, limit: int = 20) -> List[TrustEventDB]:
        """Most recent trust events first."""
        try:
            return self.db.query(TrustEventDB).filter(
                TrustEventDB.user_id == user_id
            ).order_by(TrustEventDB.created_at.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable("trust event ledger unavailable") from e

    def _refresh_cache(self, user_id: str) -> None:
        """Write-through: the standing record cache always follows the ledger."""
        score = self.get_score(user_id)
        try:
            standing = self.db.query(StandingRecordDB).filter(
                StandingRecordDB.user_id == user_id
            ).first()
            if standing is None:
                standing = StandingRecordDB(user_id=user_id)
                self.db.add(standing)
            standing.trust_score = score
            self.db.flush()
        except SQLAlchemyError as e:
            raise StoreUnavailable("standing record store unavailable") from e


def get_trust_score_category(score: int) -> Dict[str, str]:
    """Map a score onto its display category."""
    for minimum, level, label, description in TRUST_SCORE_CATEGORIES:
        if score >= minimum:
            return {"level": level, "label": label, "description": description}
    _, level, label, description = TRUST_SCORE_CATEGORIES[-1]
    return {"level": level, "label": label, "description": description}


def get_trust_score_recommendations(score: int, role: str) -> List[str]:
    """Suggestions for raising a score, by role."""
    recommendations = []

    if score < 80:
        if role == UserRole.CLIENT.value:
            recommendations.append("Pay for completed jobs on time (within 24 hours)")
            recommendations.append("Avoid cancelling jobs shortly before they start")
            recommendations.append("Verify your company details for +20 points")
        else:
            recommendations.append("Arrive at jobs on time")
            recommendations.append("Complete jobs in full")
            recommendations.append("Earn good ratings from clients")
            recommendations.append("Verify your passport for +10 points")

    if score < 50:
        recommendations.append("Contact support to discuss restoring your reputation")

    return recommendations
