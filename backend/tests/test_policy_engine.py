"""
Tests for the Policy Enforcement Engine.

Test Coverage:
1. Fixed rule application - impact comes from the rule, one trust event
2. Effects written to the standing record with exact expiries
3. Unknown violations are rejected before anything is written
4. Notification failures never roll back a sanction
5. Operator alerts for severe violations
6. Idempotent expiry sweep
7. Timestamp-evaluated active policies
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import SQLAlchemyError

from shiftguard.models.db_models import (
    TrustEventDB, PolicyEnforcementLogDB, NotificationDB, StandingRecordDB,
    ViolationKind, EffectType, RestrictionKind,
)
from shiftguard.models.decisions import IntentKind
from shiftguard.services.enforcement import (
    PolicyEnforcementEngine, NotificationDispatcher, UnknownViolation, StoreUnavailable,
    Unauthenticated, POLICY_RULES,
)
from shiftguard.services.enforcement.policy_engine import (
    active_policies_from_standing, format_duration, format_policy_message,
)
from shiftguard.timeutils import utcnow


# =============================================================================
# TEST: RULE TABLE
# =============================================================================

class TestPolicyRules:
    """Every violation kind has exactly one rule."""

    def test_every_violation_has_a_rule(self):
        assert set(POLICY_RULES) == set(ViolationKind)

    def test_all_impacts_are_penalties(self):
        for kind, rule in POLICY_RULES.items():
            assert rule.trust_score_impact < 0, kind

    def test_format_duration(self):
        assert format_duration(timedelta(days=7)) == "for 7 days"
        assert format_duration(timedelta(hours=5)) == "for 5 hours"
        assert format_duration(None) == "permanently"

    def test_policy_message_lists_consequences(self):
        message = format_policy_message(POLICY_RULES[ViolationKind.NO_SHOW])
        assert "Actions restricted for 7 days" in message
        assert "Trust Score: -20" in message


# =============================================================================
# TEST: APPLY POLICY
# =============================================================================

class TestApplyPolicy:
    """Tests for PolicyEnforcementEngine.apply_policy."""

    def test_no_show_records_one_event_and_seven_day_limit(self, db_session, make_user):
        """no_show -> one -20 event, LIMIT expiring exactly 7 days after now."""
        worker = make_user()
        now = utcnow()
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        result = engine.apply_policy(worker.id, ViolationKind.NO_SHOW, resource_id="job-1", now=now)

        assert result.applied is True
        assert result.error is None
        assert result.trust_score_impact == -20
        assert [e.effect for e in result.effects] == [EffectType.LIMIT]

        events = db_session.query(TrustEventDB).filter(TrustEventDB.user_id == worker.id).all()
        assert len(events) == 1
        assert events[0].impact == -20
        assert events[0].event_type == "no_show"
        assert events[0].resource_id == "job-1"

        standing = db_session.query(StandingRecordDB).filter(StandingRecordDB.user_id == worker.id).one()
        assert standing.restriction_type == RestrictionKind.LIMIT.value
        assert standing.restriction_violation == "no_show"
        assert standing.restriction_expires_at == now + timedelta(days=7)
        assert standing.trust_score == 80
        assert standing.is_blocked is False

    def test_string_violation_is_accepted(self, db_session, make_user):
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        result = engine.apply_policy(worker.id, "late_arrival")

        assert result.violation == ViolationKind.LATE_ARRIVAL
        assert engine.trust.get_score(worker.id) == 95

    def test_enforcement_log_written(self, db_session, make_user):
        client = make_user(role="client")
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        engine.apply_policy(client.id, ViolationKind.LATE_CANCELLATION_HIGH, metadata={"reported_by": "ops"})

        entry = db_session.query(PolicyEnforcementLogDB).filter(
            PolicyEnforcementLogDB.user_id == client.id
        ).one()
        assert entry.violation == "late_cancellation_high"
        assert entry.trust_score_impact == -30
        assert [e["action"] for e in entry.effects] == ["limit", "require_prepayment"]
        assert entry.effects[1]["duration_seconds"] == 30 * 24 * 3600
        assert entry.event_metadata == {"reported_by": "ops"}

    def test_block_without_duration_is_permanent(self, db_session, make_user):
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))
        now = utcnow()

        engine.apply_policy(worker.id, ViolationKind.FAKE_DOCUMENTS, now=now)

        policies = engine.get_active_policies(worker.id, now=now + timedelta(days=3650))
        assert policies.blocked is True
        assert policies.blocked_until is None
        assert policies.blocked_reason == "Forged documents"

    def test_unpaid_job_sets_block_and_prepayment(self, db_session, make_user):
        client = make_user(role="client")
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        engine.apply_policy(client.id, ViolationKind.UNPAID_JOB)

        policies = engine.get_active_policies(client.id)
        assert policies.blocked is True
        assert policies.requires_prepayment is True

    def test_same_kind_effect_overwrites(self, db_session, make_user):
        """A second LIMIT replaces the first instead of stacking."""
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))
        now = utcnow()

        engine.apply_policy(worker.id, ViolationKind.NO_SHOW, now=now)
        engine.apply_policy(worker.id, ViolationKind.SPAM_MESSAGES, now=now + timedelta(hours=1))

        standing = engine.get_standing(worker.id)
        assert standing.restriction_violation == "spam_messages"
        assert standing.restriction_expires_at == now + timedelta(hours=1, days=3)
        assert engine.trust.get_score(worker.id) == 70

    def test_creates_standing_record_when_missing(self, db_session, make_user):
        worker = make_user(with_standing=False)
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        engine.apply_policy(worker.id, ViolationKind.NO_SHOW)

        assert engine.get_standing(worker.id) is not None

    def test_unknown_violation_raises_and_writes_nothing(self, db_session, make_user):
        worker = make_user()
        dispatcher = MagicMock()
        engine = PolicyEnforcementEngine(db_session, dispatcher=dispatcher)

        with pytest.raises(UnknownViolation) as exc_info:
            engine.apply_policy(worker.id, "jaywalking")

        assert "jaywalking" in str(exc_info.value)
        assert db_session.query(TrustEventDB).count() == 0
        assert db_session.query(PolicyEnforcementLogDB).count() == 0
        dispatcher.dispatch.assert_not_called()

    def test_unknown_user_raises_and_writes_nothing(self, db_session):
        dispatcher = MagicMock()
        engine = PolicyEnforcementEngine(db_session, dispatcher=dispatcher)

        with pytest.raises(Unauthenticated):
            engine.apply_policy("no-such-user", ViolationKind.NO_SHOW)

        assert db_session.query(TrustEventDB).count() == 0
        assert db_session.query(StandingRecordDB).count() == 0
        assert db_session.query(PolicyEnforcementLogDB).count() == 0
        dispatcher.dispatch.assert_not_called()

    def test_event_and_log_share_the_given_time(self, db_session, make_user):
        """A backdated sanction stamps its trust event with the same time."""
        worker = make_user()
        now = utcnow() - timedelta(days=3)
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        engine.apply_policy(worker.id, ViolationKind.LATE_ARRIVAL, now=now)

        event = db_session.query(TrustEventDB).filter(TrustEventDB.user_id == worker.id).one()
        entry = db_session.query(PolicyEnforcementLogDB).filter(
            PolicyEnforcementLogDB.user_id == worker.id
        ).one()
        assert event.created_at == now
        assert entry.created_at == now

    def test_store_failure_raises_store_unavailable(self):
        mock_db = MagicMock()
        mock_db.add.side_effect = SQLAlchemyError("connection lost")
        dispatcher = MagicMock()
        engine = PolicyEnforcementEngine(mock_db, dispatcher=dispatcher)

        with pytest.raises(StoreUnavailable):
            engine.apply_policy("user-1", ViolationKind.NO_SHOW)

        mock_db.rollback.assert_called()
        mock_db.commit.assert_not_called()
        dispatcher.dispatch.assert_not_called()


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================

class TestPolicyNotifications:
    """Notification delivery happens after commit and never undoes a sanction."""

    def test_user_notification_stored(self, db_session, make_user):
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session)

        result = engine.apply_policy(worker.id, ViolationKind.LATE_ARRIVAL)

        assert result.error is None
        notification = db_session.query(NotificationDB).filter(NotificationDB.user_id == worker.id).one()
        assert notification.type == "policy_violation"
        assert notification.action_url == "/profile/violations"
        assert "Trust Score: -5" in notification.body

    def test_delivery_failure_keeps_sanction(self, db_session, make_user):
        worker = make_user()
        dispatcher = MagicMock()
        dispatcher.dispatch.return_value = ["user_notification: smtp down"]
        engine = PolicyEnforcementEngine(db_session, dispatcher=dispatcher)

        result = engine.apply_policy(worker.id, ViolationKind.NO_SHOW)

        assert result.applied is True
        assert result.error == "user_notification: smtp down"
        assert engine.trust.get_score(worker.id) == 80
        assert engine.get_active_policies(worker.id).restrictions is not None

    def test_admin_alert_for_severe_violation(self, db_session, make_user):
        worker = make_user()
        dispatcher = MagicMock()
        dispatcher.dispatch.return_value = []
        engine = PolicyEnforcementEngine(db_session, dispatcher=dispatcher)

        result = engine.apply_policy(worker.id, ViolationKind.NO_SHOW)

        kinds = [intent.kind for intent in result.notifications]
        assert kinds == [IntentKind.USER_NOTIFICATION, IntentKind.ADMIN_ALERT]
        dispatcher.dispatch.assert_called_once_with(result.notifications)

    def test_no_admin_alert_for_minor_violation(self, db_session, make_user):
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session, dispatcher=MagicMock(dispatch=MagicMock(return_value=[])))

        result = engine.apply_policy(worker.id, ViolationKind.LATE_ARRIVAL)

        assert [intent.kind for intent in result.notifications] == [IntentKind.USER_NOTIFICATION]

    def test_dispatcher_reports_store_failure(self):
        from shiftguard.models.decisions import NotificationIntent

        mock_db = MagicMock()
        mock_db.commit.side_effect = SQLAlchemyError("disk full")
        dispatcher = NotificationDispatcher(mock_db)

        errors = dispatcher.dispatch([
            NotificationIntent(
                kind=IntentKind.USER_NOTIFICATION,
                user_id="user-1",
                title="Platform rules violation",
                body="...",
            ),
            NotificationIntent(
                kind=IntentKind.ADMIN_ALERT,
                user_id="user-1",
                title="User user-1 violated: no_show",
                body="...",
            ),
        ])

        assert len(errors) == 1
        assert errors[0].startswith("user_notification:")
        mock_db.rollback.assert_called_once()


# =============================================================================
# TEST: SWEEP + ACTIVE POLICIES
# =============================================================================

class TestSweepExpired:
    """Tests for the idempotent expiry sweep."""

    def test_sweep_clears_expired_and_is_idempotent(self, db_session, make_user):
        now = utcnow()
        expired = make_user(
            is_blocked=True,
            blocked_reason="Temporary block",
            blocked_until=now - timedelta(minutes=1),
            restriction_type=RestrictionKind.LIMIT.value,
            restriction_reason="Cannot apply to jobs for 7 days",
            restriction_expires_at=now - timedelta(minutes=1),
            requires_prepayment=True,
            prepayment_until=now - timedelta(days=1),
            requires_manual_review=True,
            manual_review_until=now,
        )
        permanent = make_user(is_blocked=True, blocked_reason="Forged documents")
        engine = PolicyEnforcementEngine(db_session)

        first = engine.sweep_expired(now=now)
        second = engine.sweep_expired(now=now)

        assert first == {
            "blocks_cleared": 1,
            "restrictions_cleared": 1,
            "prepayments_cleared": 1,
            "manual_reviews_cleared": 1,
        }
        assert second == {
            "blocks_cleared": 0,
            "restrictions_cleared": 0,
            "prepayments_cleared": 0,
            "manual_reviews_cleared": 0,
        }

        standing = engine.get_standing(expired.id)
        assert standing.is_blocked is False
        assert standing.blocked_until is None
        assert standing.restriction_type is None
        assert standing.requires_prepayment is False
        assert standing.requires_manual_review is False

        assert engine.get_standing(permanent.id).is_blocked is True

    def test_sweep_leaves_future_expiries(self, db_session, make_user):
        now = utcnow()
        worker = make_user(
            restriction_type=RestrictionKind.LIMIT.value,
            restriction_expires_at=now + timedelta(days=1),
        )
        engine = PolicyEnforcementEngine(db_session)

        result = engine.sweep_expired(now=now)

        assert result["restrictions_cleared"] == 0
        assert engine.get_standing(worker.id).restriction_type == RestrictionKind.LIMIT.value

    def test_expired_sanctions_inactive_before_sweep(self, db_session, make_user):
        now = utcnow()
        worker = make_user(
            is_blocked=True,
            blocked_until=now - timedelta(seconds=1),
            restriction_type=RestrictionKind.LIMIT.value,
            restriction_expires_at=now,
        )
        engine = PolicyEnforcementEngine(db_session)

        policies = engine.get_active_policies(worker.id, now=now)

        assert policies.blocked is False
        assert policies.restrictions is None
        # The record itself is untouched until the sweep runs
        assert engine.get_standing(worker.id).is_blocked is True

    def test_active_policies_without_standing(self):
        policies = active_policies_from_standing(None, utcnow())
        assert policies.to_dict() == {
            "blocked": False,
            "blocked_reason": None,
            "blocked_until": None,
            "restrictions": None,
            "requires_prepayment": False,
            "requires_manual_review": False,
        }


class TestUnblockUser:

    def test_unblock_lifts_permanent_block(self, db_session, make_user):
        worker = make_user(is_blocked=True, blocked_reason="Forged documents")
        engine = PolicyEnforcementEngine(db_session)

        assert engine.unblock_user(worker.id) is True
        assert engine.get_active_policies(worker.id).blocked is False

    def test_unblock_when_not_blocked(self, db_session, make_user):
        worker = make_user()
        engine = PolicyEnforcementEngine(db_session)

        assert engine.unblock_user(worker.id) is False
