"""
Shift Marketplace Policy Engine - Ephemeral Decision Models

Value objects passed between the guard, the policy engine and the routers.
None of these are persisted.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Any, FrozenSet

from .db_models import EffectType, JobStatus, ViolationKind


class BlockedBy(str, Enum):
    """Category of the guard step that denied an action."""
    DEMO = "demo"
    USER_BLOCKED = "user_blocked"
    POLICY = "policy"
    TRUST_SCORE = "trust_score"
    RESOURCE_STATE = "resource_state"
    RATE_LIMIT = "rate_limit"


class IntentKind(str, Enum):
    USER_NOTIFICATION = "user_notification"
    ADMIN_ALERT = "admin_alert"


# =============================================================================
# GUARD OUTPUT
# =============================================================================

@dataclass(frozen=True)
class ActionDecision:
    """Result of ActionGuard.can_perform_action."""
    allowed: bool
    reason: Optional[str] = None
    blocked_by: Optional[BlockedBy] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def allow(cls) -> "ActionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        blocked_by: BlockedBy,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ActionDecision":
        return cls(allowed=False, reason=reason, blocked_by=blocked_by, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "blocked_by": self.blocked_by.value if self.blocked_by else None,
            "metadata": self.metadata,
        }


# =============================================================================
# GUARD INPUT SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class RequesterSnapshot:
    """Profile fields of the acting user, read once per decision."""
    user_id: str
    is_demo: bool = False
    phone_verified: bool = False
    identity_verified: bool = False
    unpaid_debts: int = 0
    completed_jobs: int = 0


@dataclass(frozen=True)
class JobSnapshot:
    """State of a job as seen by resource-state predicates."""
    id: str
    owner_id: str
    status: JobStatus
    start_time: datetime
    assigned_worker_ids: FrozenSet[str] = frozenset()
    has_check_ins: bool = False

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.owner_id or user_id in self.assigned_worker_ids


# =============================================================================
# POLICY ENGINE
# =============================================================================

@dataclass(frozen=True)
class PolicyEffect:
    """A single sanction within a policy rule. duration=None means permanent."""
    effect: EffectType
    reason: str
    duration: Optional[timedelta] = None

    def expires_at(self, now: datetime) -> Optional[datetime]:
        return now + self.duration if self.duration else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.effect.value,
            "reason": self.reason,
            "duration_seconds": int(self.duration.total_seconds()) if self.duration else None,
        }


@dataclass(frozen=True)
class PolicyRule:
    """Static sanction contract for one violation kind."""
    trust_score_impact: int
    effects: tuple
    description: str


@dataclass
class NotificationIntent:
    """A message the policy engine wants delivered; handled by the dispatcher."""
    kind: IntentKind
    user_id: str
    title: str
    body: str
    notification_type: str = "policy_violation"
    action_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PolicyResult:
    """Outcome of PolicyEnforcementEngine.apply_policy."""
    violation: ViolationKind
    trust_score_impact: int
    effects: List[PolicyEffect]
    applied: bool
    error: Optional[str] = None
    notifications: List[NotificationIntent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "violation": self.violation.value,
            "trust_score_impact": self.trust_score_impact,
            "effects": [e.to_dict() for e in self.effects],
            "applied": self.applied,
            "error": self.error,
        }


@dataclass
class ActivePolicies:
    """Sanctions in force at a given instant."""
    blocked: bool = False
    blocked_reason: Optional[str] = None
    blocked_until: Optional[datetime] = None
    restrictions: Optional[Dict[str, Any]] = None
    requires_prepayment: bool = False
    requires_manual_review: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "blocked_reason": self.blocked_reason,
            "blocked_until": self.blocked_until.isoformat() if self.blocked_until else None,
            "restrictions": self.restrictions,
            "requires_prepayment": self.requires_prepayment,
            "requires_manual_review": self.requires_manual_review,
        }
