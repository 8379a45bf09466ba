"""
Policy Enforcement Engine

AUTHORITY: SYSTEM
Single entry point for sanctions. Every trust penalty, block, limit,
prepayment requirement and moderation flag flows through apply_policy().

Key behaviors:
- Each violation kind maps to ONE fixed rule (impact + ordered effects)
- The trust impact comes from the rule, never from the caller
- Trust event, standing record effects and the enforcement log commit together
- Notifications are returned as intents and delivered after commit
- Expired sanctions are cleared by an idempotent sweep, but every read
  compares expiry timestamps itself
"""
import logging
from datetime import datetime, timedelta
from uuid import uuid4
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    UserDB, StandingRecordDB, PolicyEnforcementLogDB, ViolationKind, EffectType, RestrictionKind,
)
from ...models.decisions import (
    PolicyEffect, PolicyRule, PolicyResult, ActivePolicies, NotificationIntent, IntentKind,
)
from ...timeutils import utcnow, is_active_until
from .errors import UnknownViolation, StoreUnavailable, Unauthenticated
from .notifications import NotificationDispatcher
from .trust_score import TrustScoreService

logger = logging.getLogger(__name__)


# =============================================================================
# POLICY RULES
# =============================================================================

# |impact| at or above this raises an operator alert
ADMIN_ALERT_THRESHOLD = 20

POLICY_RULES: Dict[ViolationKind, PolicyRule] = {
    # ===== CLIENT VIOLATIONS =====
    ViolationKind.UNPAID_JOB: PolicyRule(
        trust_score_impact=-30,
        effects=(
            # Permanent until the debt is settled and an admin unblocks
            PolicyEffect(EffectType.BLOCK, "Unpaid job"),
            PolicyEffect(EffectType.REQUIRE_PREPAYMENT, "All future jobs require prepayment"),
        ),
        description="Client did not pay for a job within 24 hours",
    ),
    ViolationKind.LATE_PAYMENT: PolicyRule(
        trust_score_impact=-10,
        effects=(PolicyEffect(EffectType.WARNING, "Late payment"),),
        description="Client paid 24-48 hours late",
    ),
    ViolationKind.LATE_CANCELLATION_HIGH: PolicyRule(
        trust_score_impact=-30,
        effects=(
            PolicyEffect(EffectType.LIMIT, "Cannot create jobs for 7 days", timedelta(days=7)),
            PolicyEffect(EffectType.REQUIRE_PREPAYMENT, "Prepayment required for 30 days", timedelta(days=30)),
        ),
        description="Client cancelled a job less than 2 hours before start",
    ),
    ViolationKind.LATE_CANCELLATION_MED: PolicyRule(
        trust_score_impact=-20,
        effects=(PolicyEffect(EffectType.WARNING, "Late job cancellation"),),
        description="Client cancelled a job 2-12 hours before start",
    ),
    ViolationKind.LATE_CANCELLATION_LOW: PolicyRule(
        trust_score_impact=-10,
        effects=(PolicyEffect(EffectType.WARNING, "Job cancelled less than 24 hours before start"),),
        description="Client cancelled a job 12-24 hours before start",
    ),
    ViolationKind.DISPUTE_LOST: PolicyRule(
        trust_score_impact=-20,
        effects=(
            PolicyEffect(EffectType.MANUAL_REVIEW, "All jobs are moderated for 30 days", timedelta(days=30)),
        ),
        description="Client lost a dispute (resolved in the worker's favour)",
    ),
    ViolationKind.SPAM_CONTENT: PolicyRule(
        trust_score_impact=-15,
        effects=(
            PolicyEffect(EffectType.MANUAL_REVIEW, "Job descriptions are moderated for 14 days", timedelta(days=14)),
        ),
        description="Spam detected in a job description (phone numbers, links)",
    ),
    ViolationKind.FAKE_COMPANY: PolicyRule(
        trust_score_impact=-50,
        effects=(PolicyEffect(EffectType.BLOCK, "Fake company tax id"),),
        description="Non-existent or someone else's company tax id",
    ),

    # ===== WORKER VIOLATIONS =====
    ViolationKind.NO_SHOW: PolicyRule(
        trust_score_impact=-20,
        effects=(
            PolicyEffect(EffectType.LIMIT, "Cannot apply to jobs for 7 days", timedelta(days=7)),
        ),
        description="Worker did not show up for a job (no check-in)",
    ),
    ViolationKind.LATE_ARRIVAL: PolicyRule(
        trust_score_impact=-5,
        effects=(PolicyEffect(EffectType.WARNING, "Late arrival"),),
        description="Worker arrived more than 30 minutes late",
    ),
    ViolationKind.EARLY_LEAVE: PolicyRule(
        trust_score_impact=-10,
        effects=(PolicyEffect(EffectType.WARNING, "Left the job early"),),
        description="Worker left before the end of the job without agreement",
    ),
    ViolationKind.SPAM_MESSAGES: PolicyRule(
        trust_score_impact=-10,
        effects=(
            PolicyEffect(EffectType.LIMIT, "Messaging restricted for 3 days", timedelta(days=3)),
        ),
        description="Spam in chat (phone numbers, links, duplicates)",
    ),
    ViolationKind.FAKE_DOCUMENTS: PolicyRule(
        trust_score_impact=-50,
        effects=(PolicyEffect(EffectType.BLOCK, "Forged documents"),),
        description="Forged or someone else's documents uploaded",
    ),
}


def get_policy_rule(violation: Any) -> PolicyRule:
    """Resolve a rule, raising UnknownViolation for anything unmapped."""
    try:
        kind = ViolationKind(violation)
    except ValueError:
        raise UnknownViolation(violation)
    rule = POLICY_RULES.get(kind)
    if rule is None:
        raise UnknownViolation(violation)
    return rule


def format_duration(duration: Optional[timedelta]) -> str:
    """'for 7 days', 'for 5 hours' or 'permanently'."""
    if not duration:
        return "permanently"
    if duration.days > 0:
        return f"for {duration.days} days"
    return f"for {int(duration.total_seconds() // 3600)} hours"


def format_policy_message(rule: PolicyRule) -> str:
    """User-facing description of a sanction."""
    lines = []
    for effect in rule.effects:
        if effect.effect == EffectType.BLOCK:
            lines.append("Your account has been blocked")
        elif effect.effect == EffectType.LIMIT:
            lines.append(f"Actions restricted {format_duration(effect.duration)}: {effect.reason}")
        elif effect.effect == EffectType.REQUIRE_PREPAYMENT:
            lines.append(f"Prepayment required {format_duration(effect.duration)}")
        elif effect.effect == EffectType.MANUAL_REVIEW:
            lines.append(f"All actions moderated {format_duration(effect.duration)}")
        elif effect.effect == EffectType.WARNING:
            lines.append("Warning")

    sign = "+" if rule.trust_score_impact > 0 else ""
    return (
        f"{rule.description}\n\n"
        "Consequences:\n"
        + "\n".join(f"- {line}" for line in lines)
        + f"\n\nTrust Score: {sign}{rule.trust_score_impact}\n\n"
        "How to avoid sanctions: see the platform rules"
    )


# =============================================================================
# POLICY ENFORCEMENT ENGINE
# =============================================================================

class PolicyEnforcementEngine:
    """
    Applies sanctions and answers "what is in force for this user right now".

    Core Responsibilities:
    - apply_policy: trust event + effects + log, one transaction
    - sweep_expired: idempotent clearing of lapsed sanctions
    - get_active_policies: timestamp-evaluated view of the standing record
    """

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.trust = TrustScoreService(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db)

    def apply_policy(
        self,
        user_id: str,
        violation: Any,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> PolicyResult:
        """
        Apply the fixed sanction for a violation.

        Raises:
            UnknownViolation: violation has no rule
            Unauthenticated: user_id does not resolve to a user (nothing applied)
            StoreUnavailable: the sanction could not be persisted (nothing applied)
        """
        rule = get_policy_rule(violation)
        kind = ViolationKind(violation)
        now = now or utcnow()

        try:
            user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable("profile store unavailable") from e
        if user is None:
            raise Unauthenticated(f"Unknown user: {user_id}")

        try:
            # 1. Trust event with the rule's fixed impact
            self.trust.record_event(
                user_id,
                kind,
                rule.trust_score_impact,
                resource_id=resource_id,
                description=rule.description,
                metadata={
                    **(metadata or {}),
                    "policy_applied": True,
                    "effects": [e.effect.value for e in rule.effects],
                },
                created_at=now,
            )

            # 2. Effects on the standing record
            standing = self._get_or_create_standing(user_id)
            for effect in rule.effects:
                self._apply_effect(standing, effect, kind, now)

            # 3. Immutable enforcement log
            self.db.add(PolicyEnforcementLogDB(
                id=str(uuid4()),
                user_id=user_id,
                violation=kind.value,
                trust_score_impact=rule.trust_score_impact,
                effects=[e.to_dict() for e in rule.effects],
                resource_id=resource_id,
                event_metadata=metadata,
                created_at=now,
            ))

            self.db.commit()
        except (SQLAlchemyError, StoreUnavailable) as e:
            self.db.rollback()
            logger.error(f"Failed to apply policy {kind.value} to {user_id}: {e}")
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable("policy store unavailable") from e

        logger.info(
            f"Policy applied: user={user_id} violation={kind.value} "
            f"impact={rule.trust_score_impact} effects={[e.effect.value for e in rule.effects]}"
        )

        result = PolicyResult(
            violation=kind,
            trust_score_impact=rule.trust_score_impact,
            effects=list(rule.effects),
            applied=True,
            notifications=self.build_notifications(user_id, kind, rule, now),
        )

        # 4. Deliver after commit; failures never undo the sanction
        errors = self.dispatcher.dispatch(result.notifications)
        if errors:
            result.error = "; ".join(errors)

        return result

    def build_notifications(
        self,
        user_id: str,
        violation: ViolationKind,
        rule: PolicyRule,
        now: datetime,
    ) -> List[NotificationIntent]:
        """Intents for the user notice and, for severe violations, an operator alert."""
        expiries = {
            e.effect.value: (e.expires_at(now).isoformat() if e.duration else None)
            for e in rule.effects if e.effect != EffectType.WARNING
        }
        intents = [
            NotificationIntent(
                kind=IntentKind.USER_NOTIFICATION,
                user_id=user_id,
                title="Platform rules violation",
                body=format_policy_message(rule),
                action_url="/profile/violations",
                metadata={"violation": violation.value, "expires": expiries},
            )
        ]
        if abs(rule.trust_score_impact) >= ADMIN_ALERT_THRESHOLD:
            intents.append(NotificationIntent(
                kind=IntentKind.ADMIN_ALERT,
                user_id=user_id,
                title=f"User {user_id} violated: {violation.value}",
                body=rule.description,
                notification_type="admin_alert",
                metadata={
                    "violation": violation.value,
                    "trust_score_impact": rule.trust_score_impact,
                },
            ))
        return intents

    # =========================================================================
    # EFFECT STATE MACHINE
    # =========================================================================

    def _apply_effect(
        self,
        standing: StandingRecordDB,
        effect: PolicyEffect,
        violation: ViolationKind,
        now: datetime,
    ) -> None:
        """Write one effect. Same-kind effects overwrite, never stack."""
        expires_at = effect.expires_at(now)

        if effect.effect == EffectType.BLOCK:
            standing.is_blocked = True
            standing.blocked_reason = effect.reason
            standing.blocked_at = now
            standing.blocked_until = expires_at

        elif effect.effect == EffectType.LIMIT:
            standing.restriction_type = RestrictionKind.LIMIT.value
            standing.restriction_reason = effect.reason
            standing.restriction_violation = violation.value
            standing.restriction_expires_at = expires_at

        elif effect.effect == EffectType.REQUIRE_PREPAYMENT:
            standing.requires_prepayment = True
            standing.prepayment_reason = effect.reason
            standing.prepayment_until = expires_at

        elif effect.effect == EffectType.MANUAL_REVIEW:
            standing.requires_manual_review = True
            standing.manual_review_reason = effect.reason
            standing.manual_review_until = expires_at

        # WARNING: the trust event and the notice are the whole consequence

    def _get_or_create_standing(self, user_id: str) -> StandingRecordDB:
        standing = self.db.query(StandingRecordDB).filter(
            StandingRecordDB.user_id == user_id
        ).first()
        if standing is None:
            standing = StandingRecordDB(user_id=user_id)
            self.db.add(standing)
            self.db.flush()
        return standing

    # =========================================================================
    # SWEEP
    # =========================================================================

    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Clear every sanction whose expiry has passed.

        AUTHORITY: SYSTEM - Called by the internal scheduler.
        Set-based UPDATEs keyed on expiry, so repeated or concurrent runs
        converge on the same state.
        """
        now = now or utcnow()
        query = self.db.query(StandingRecordDB)
        try:
            blocks = query.filter(
                StandingRecordDB.is_blocked.is_(True),
                StandingRecordDB.blocked_until.isnot(None),
                StandingRecordDB.blocked_until <= now,
            ).update({
                StandingRecordDB.is_blocked: False,
                StandingRecordDB.blocked_reason: None,
                StandingRecordDB.blocked_at: None,
                StandingRecordDB.blocked_until: None,
            }, synchronize_session=False)

            restrictions = query.filter(
                StandingRecordDB.restriction_type.isnot(None),
                StandingRecordDB.restriction_expires_at.isnot(None),
                StandingRecordDB.restriction_expires_at <= now,
            ).update({
                StandingRecordDB.restriction_type: None,
                StandingRecordDB.restriction_reason: None,
                StandingRecordDB.restriction_violation: None,
                StandingRecordDB.restriction_expires_at: None,
            }, synchronize_session=False)

            prepayments = query.filter(
                StandingRecordDB.requires_prepayment.is_(True),
                StandingRecordDB.prepayment_until.isnot(None),
                StandingRecordDB.prepayment_until <= now,
            ).update({
                StandingRecordDB.requires_prepayment: False,
                StandingRecordDB.prepayment_reason: None,
                StandingRecordDB.prepayment_until: None,
            }, synchronize_session=False)

            reviews = query.filter(
                StandingRecordDB.requires_manual_review.is_(True),
                StandingRecordDB.manual_review_until.isnot(None),
                StandingRecordDB.manual_review_until <= now,
            ).update({
                StandingRecordDB.requires_manual_review: False,
                StandingRecordDB.manual_review_reason: None,
                StandingRecordDB.manual_review_until: None,
            }, synchronize_session=False)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Policy sweep failed: {e}")
            raise StoreUnavailable("standing record store unavailable") from e

        # Bulk updates bypass the identity map
        self.db.expire_all()

        result = {
            "blocks_cleared": blocks,
            "restrictions_cleared": restrictions,
            "prepayments_cleared": prepayments,
            "manual_reviews_cleared": reviews,
        }
        logger.info(f"Policy sweep complete at {now.isoformat()}: {result}")
        return result

    # =========================================================================
    # READS
    # =========================================================================

    def get_standing(self, user_id: str) -> Optional[StandingRecordDB]:
        try:
            return self.db.query(StandingRecordDB).filter(
                StandingRecordDB.user_id == user_id
            ).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable("standing record store unavailable") from e

    def get_active_policies(self, user_id: str, now: Optional[datetime] = None) -> ActivePolicies:
        """Sanctions in force at `now`, regardless of whether a sweep has run."""
        return active_policies_from_standing(self.get_standing(user_id), now or utcnow())

    def get_enforcement_history(self, user_id: str, limit: int = 50) -> List[PolicyEnforcementLogDB]:
        try:
            return self.db.query(PolicyEnforcementLogDB).filter(
                PolicyEnforcementLogDB.user_id == user_id
            ).order_by(PolicyEnforcementLogDB.created_at.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise StoreUnavailable("policy store unavailable") from e

    def unblock_user(self, user_id: str) -> bool:
        """Admin override: lift a block regardless of its expiry."""
        try:
            standing = self.get_standing(user_id)
            if standing is None or not standing.is_blocked:
                return False
            standing.is_blocked = False
            standing.blocked_reason = None
            standing.blocked_at = None
            standing.blocked_until = None
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable("standing record store unavailable") from e
        logger.info(f"User unblocked by admin: {user_id}")
        return True


def active_policies_from_standing(
    standing: Optional[StandingRecordDB],
    now: datetime,
) -> ActivePolicies:
    """Pure timestamp evaluation of a standing record."""
    if standing is None:
        return ActivePolicies()

    blocked = bool(standing.is_blocked) and is_active_until(standing.blocked_until, now)

    restrictions = None
    if standing.restriction_type and is_active_until(standing.restriction_expires_at, now):
        restrictions = {
            "type": standing.restriction_type,
            "reason": standing.restriction_reason,
            "violation": standing.restriction_violation,
            "expires_at": (
                standing.restriction_expires_at.isoformat()
                if standing.restriction_expires_at else None
            ),
        }

    return ActivePolicies(
        blocked=blocked,
        blocked_reason=standing.blocked_reason if blocked else None,
        blocked_until=standing.blocked_until if blocked else None,
        restrictions=restrictions,
        requires_prepayment=(
            bool(standing.requires_prepayment) and is_active_until(standing.prepayment_until, now)
        ),
        requires_manual_review=(
            bool(standing.requires_manual_review) and is_active_until(standing.manual_review_until, now)
        ),
    )
