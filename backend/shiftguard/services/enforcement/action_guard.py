"""
Action Authorization Guard

The single gate called before every sensitive action.

Evaluation order (first denial wins):
1. Demo account         -> DEMO
2. Active block         -> USER_BLOCKED
3. Active restriction   -> POLICY
4. Trust score minimum  -> TRUST_SCORE
5. Resource state       -> RESOURCE_STATE
6. Sliding-window rate  -> RATE_LIMIT

can_perform_action() only reads. It does not log, append audit entries or
notify; the request adapter does that after an allow. Store failures raise
StoreUnavailable instead of producing a decision.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    UserDB, StandingRecordDB, JobDB, JobAssignmentDB, JobApplicationDB, Action, IdentityStatus,
    RestrictionKind,
)
from ...models.decisions import ActionDecision, BlockedBy, JobSnapshot, RequesterSnapshot
from ...timeutils import utcnow
from .action_ledger import ActionAuditLedger
from .action_rules import ActionRule, get_action_rule, effective_max_count
from .errors import StoreUnavailable, Unauthenticated
from .policy_engine import active_policies_from_standing
from .resource_rules import ResourceContext, ResourceFact, ACTIVE_JOB_STATUSES
from .trust_score import TrustScoreService


class ActionGuard:
    """
    Composes standing, trust score, resource state and rate limits into
    one allow/deny decision.

    Each step is exposed as its own method so it can be tested alone.
    """

    def __init__(self, db: Session):
        self.db = db
        self.trust = TrustScoreService(db)
        self.ledger = ActionAuditLedger(db)

    def can_perform_action(
        self,
        user_id: str,
        action: Action,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ActionDecision:
        """
        Decide whether user_id may perform action on resource_id.

        Args:
            metadata: Caller context from the request adapter. No current
                rule reads it.

        Raises:
            Unauthenticated: user_id does not resolve to a user
            StoreUnavailable: any lookup failed (no decision is made)
        """
        action = Action(action)
        rule = get_action_rule(action)
        now = now or utcnow()

        requester = self.load_requester(user_id)

        decision = self.check_demo(requester)
        if decision:
            return decision

        standing = self.load_standing(user_id)

        decision = self.check_blocked(standing, now)
        if decision:
            return decision

        decision = self.check_restriction(standing, rule, now)
        if decision:
            return decision

        decision = self.check_trust_score(user_id, rule)
        if decision:
            return decision

        decision = self.check_resource_state(requester, rule, resource_id, now)
        if decision:
            return decision

        decision = self.check_rate_limit(requester, action, rule, now)
        if decision:
            return decision

        return ActionDecision.allow()

    # =========================================================================
    # STEPS
    # =========================================================================

    def check_demo(self, requester: RequesterSnapshot) -> Optional[ActionDecision]:
        if requester.is_demo:
            return ActionDecision.deny(
                BlockedBy.DEMO,
                "This is a demo account. Register to create jobs and apply.",
            )
        return None

    def check_blocked(self, standing: Optional[StandingRecordDB], now: datetime) -> Optional[ActionDecision]:
        policies = active_policies_from_standing(standing, now)
        if policies.blocked:
            return ActionDecision.deny(
                BlockedBy.USER_BLOCKED,
                "Your account is blocked. Contact support.",
                {
                    "blocked_reason": policies.blocked_reason,
                    "blocked_until": policies.blocked_until.isoformat() if policies.blocked_until else None,
                },
            )
        return None

    def check_restriction(
        self,
        standing: Optional[StandingRecordDB],
        rule: ActionRule,
        now: datetime,
    ) -> Optional[ActionDecision]:
        restriction = active_policies_from_standing(standing, now).restrictions
        if not restriction:
            return None
        try:
            kind = RestrictionKind(restriction["type"])
        except ValueError:
            # Unrecognised restriction on record: deny rather than guess its scope
            return ActionDecision.deny(
                BlockedBy.POLICY,
                f"Action restricted: {restriction['reason']}",
                {
                    "expires_at": restriction["expires_at"],
                    "violation": restriction["violation"],
                    "restriction_type": restriction["type"],
                },
            )
        if kind in rule.restricted_by:
            return ActionDecision.deny(
                BlockedBy.POLICY,
                f"Action restricted: {restriction['reason']}",
                {"expires_at": restriction["expires_at"], "violation": restriction["violation"]},
            )
        return None

    def check_trust_score(self, user_id: str, rule: ActionRule) -> Optional[ActionDecision]:
        score = self.trust.get_score(user_id)
        if score < rule.min_trust_score:
            return ActionDecision.deny(
                BlockedBy.TRUST_SCORE,
                f"Insufficient trust score. Required: {rule.min_trust_score}, yours: {score}",
                {"current": score, "required": rule.min_trust_score},
            )
        return None

    def check_resource_state(
        self,
        requester: RequesterSnapshot,
        rule: ActionRule,
        resource_id: Optional[str],
        now: datetime,
    ) -> Optional[ActionDecision]:
        if rule.resource_check is None:
            return None
        ctx = self.load_resource_context(requester, rule, resource_id, now)
        return rule.resource_check(ctx)

    def check_rate_limit(
        self,
        requester: RequesterSnapshot,
        action: Action,
        rule: ActionRule,
        now: datetime,
    ) -> Optional[ActionDecision]:
        max_count = effective_max_count(rule, requester.completed_jobs)
        count = self.ledger.count_in_window(
            requester.user_id, action, now - rule.rate_limit.window, now
        )
        if count >= max_count:
            window_hours = rule.rate_limit.window_hours
            return ActionDecision.deny(
                BlockedBy.RATE_LIMIT,
                f"Limit exceeded: {max_count} {action.value} per {window_hours}h. Try again later.",
                {"count": count, "maxCount": max_count, "windowHours": window_hours},
            )
        return None

    # =========================================================================
    # STORE READS
    # =========================================================================

    def load_requester(self, user_id: str) -> RequesterSnapshot:
        try:
            user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable("profile store unavailable") from e
        if user is None:
            raise Unauthenticated(f"Unknown user: {user_id}")
        return RequesterSnapshot(
            user_id=user.id,
            is_demo=bool(user.is_demo),
            phone_verified=bool(user.phone_verified),
            identity_verified=user.identity_status == IdentityStatus.VERIFIED.value,
            unpaid_debts=user.unpaid_debts or 0,
            completed_jobs=user.completed_jobs or 0,
        )

    def load_standing(self, user_id: str) -> Optional[StandingRecordDB]:
        try:
            return self.db.query(StandingRecordDB).filter(
                StandingRecordDB.user_id == user_id
            ).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable("standing record store unavailable") from e

    def load_job(self, job_id: Optional[str]) -> Optional[JobSnapshot]:
        if not job_id:
            return None
        try:
            job = self.db.query(JobDB).filter(JobDB.id == job_id).first()
            if job is None:
                return None
            assignments = self.db.query(JobAssignmentDB).filter(
                JobAssignmentDB.job_id == job_id
            ).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable("resource store unavailable") from e
        return JobSnapshot(
            id=job.id,
            owner_id=job.owner_id,
            status=job.status,
            start_time=job.start_time,
            assigned_worker_ids=frozenset(a.worker_id for a in assignments),
            has_check_ins=any(a.check_in_time is not None for a in assignments),
        )

    def load_resource_context(
        self,
        requester: RequesterSnapshot,
        rule: ActionRule,
        resource_id: Optional[str],
        now: datetime,
    ) -> ResourceContext:
        """Load only the facts the rule's predicate declares."""
        job = None
        open_job_count = 0
        has_prior_application = False
        try:
            if ResourceFact.JOB in rule.requires:
                job = self.load_job(resource_id)
            if ResourceFact.OPEN_JOB_COUNT in rule.requires:
                open_job_count = self.db.query(func.count(JobDB.id)).filter(
                    JobDB.owner_id == requester.user_id,
                    JobDB.status.in_(ACTIVE_JOB_STATUSES),
                ).scalar() or 0
            if ResourceFact.PRIOR_APPLICATION in rule.requires and resource_id:
                has_prior_application = (self.db.query(func.count(JobApplicationDB.id)).filter(
                    JobApplicationDB.job_id == resource_id,
                    JobApplicationDB.worker_id == requester.user_id,
                ).scalar() or 0) > 0
        except SQLAlchemyError as e:
            raise StoreUnavailable("resource store unavailable") from e
        return ResourceContext(
            requester=requester,
            now=now,
            job=job,
            open_job_count=open_job_count,
            has_prior_application=has_prior_application,
        )
