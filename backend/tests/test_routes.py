"""
HTTP tests for the guarded routes, policy views, admin console and scheduler.
"""
from datetime import timedelta

from shiftguard.models.db_models import ActionAuditLogDB, JobDB, JobStatus, TrustEventDB, UserRole
from shiftguard.routers.scheduler import INTERNAL_API_KEY
from shiftguard.services.enforcement import StoreUnavailable
from shiftguard.timeutils import utcnow


def _audit_count(db_session, user_id, action):
    return db_session.query(ActionAuditLogDB).filter(
        ActionAuditLogDB.user_id == user_id,
        ActionAuditLogDB.action == action,
    ).count()


# =============================================================================
# AUTH
# =============================================================================

def test_register_login_and_me(client):
    response = client.post("/auth/register", json={
        "email": "dana@shiftguard.io",
        "username": "dana",
        "password": "correct-horse",
        "role": "client",
    })
    assert response.status_code == 201

    response = client.post("/auth/login", json={"email": "dana@shiftguard.io", "password": "correct-horse"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["role"] == "client"
    assert response.json()["identity_status"] == "unverified"


def test_register_rejects_admin_role(client):
    response = client.post("/auth/register", json={
        "email": "eve@shiftguard.io",
        "username": "eve",
        "password": "correct-horse",
        "role": "admin",
    })
    assert response.status_code == 422


def test_guarded_route_requires_token(client):
    response = client.post("/jobs/job-1/apply")
    assert response.status_code == 401


def test_token_for_unknown_user_is_401(client):
    from shiftguard.auth import create_access_token

    token = create_access_token("ghost", "ghost@shiftguard.io")
    response = client.post("/jobs/job-1/apply", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


# =============================================================================
# GUARDED JOB ROUTES
# =============================================================================

def test_create_job_allowed_and_audited(client, db_session, make_user, auth_header):
    owner = make_user(role=UserRole.CLIENT.value)
    start = (utcnow() + timedelta(days=1)).isoformat()

    response = client.post("/jobs", json={"title": "Night shift", "start_time": start}, headers=auth_header(owner))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "open"
    assert body["owner_id"] == owner.id
    assert _audit_count(db_session, owner.id, "create_job") == 1


def test_denied_action_returns_structured_403(client, db_session, make_user, make_job, auth_header):
    owner = make_user(role=UserRole.CLIENT.value, is_blocked=True, blocked_reason="Unpaid job")
    job = make_job(owner)

    response = client.post(f"/jobs/{job.id}/cancel", headers=auth_header(owner))

    assert response.status_code == 403
    assert response.json()["detail"] == {
        "error": "Your account is blocked. Contact support.",
        "blocked_by": "user_blocked",
        "metadata": {"blocked_reason": "Unpaid job", "blocked_until": None},
    }
    assert _audit_count(db_session, owner.id, "cancel_job") == 0
    db_session.expire_all()
    assert db_session.query(JobDB).filter(JobDB.id == job.id).one().status == JobStatus.OPEN


def test_duplicate_apply_denied_by_resource_state(client, db_session, make_user, make_job, auth_header):
    owner = make_user(role=UserRole.CLIENT.value)
    worker = make_user()
    job = make_job(owner)

    first = client.post(f"/jobs/{job.id}/apply", headers=auth_header(worker))
    second = client.post(f"/jobs/{job.id}/apply", headers=auth_header(worker))

    assert first.status_code == 201
    assert second.status_code == 403
    assert second.json()["detail"]["blocked_by"] == "resource_state"
    assert _audit_count(db_session, worker.id, "apply_to_job") == 1


def test_accept_then_message_and_check_in(client, db_session, make_user, make_job, auth_header):
    owner = make_user(role=UserRole.CLIENT.value)
    worker = make_user()
    job = make_job(owner)

    application_id = client.post(f"/jobs/{job.id}/apply", headers=auth_header(worker)).json()["application_id"]

    # Not a participant until accepted
    response = client.post(f"/jobs/{job.id}/messages", json={"body": "Hi"}, headers=auth_header(worker))
    assert response.status_code == 403

    response = client.post(
        f"/jobs/{job.id}/applications/{application_id}/accept", headers=auth_header(owner)
    )
    assert response.status_code == 200
    assert response.json()["worker_id"] == worker.id

    response = client.post(f"/jobs/{job.id}/messages", json={"body": "On my way"}, headers=auth_header(worker))
    assert response.status_code == 201

    response = client.post(f"/jobs/{job.id}/check-in", headers=auth_header(worker))
    assert response.status_code == 200

    # Checked in: the owner can no longer cancel
    response = client.post(f"/jobs/{job.id}/cancel", headers=auth_header(owner))
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "Jobs cannot be cancelled after workers have checked in"


def test_store_failure_returns_503(client, make_user, auth_header, monkeypatch):
    from shiftguard.services.enforcement import ActionGuard

    def unavailable(self, *args, **kwargs):
        raise StoreUnavailable("standing record store unavailable")

    monkeypatch.setattr(ActionGuard, "can_perform_action", unavailable)
    worker = make_user()

    response = client.post("/jobs/job-1/apply", headers=auth_header(worker))

    assert response.status_code == 503


# =============================================================================
# POLICY VIEWS
# =============================================================================

def test_check_endpoint_is_a_dry_run(client, db_session, make_user, auth_header):
    worker = make_user(is_blocked=True, blocked_reason="Forged documents")

    response = client.post("/policies/check", json={"action": "edit_job"}, headers=auth_header(worker))

    assert response.status_code == 200
    assert response.json()["allowed"] is False
    assert response.json()["blocked_by"] == "user_blocked"
    assert _audit_count(db_session, worker.id, "edit_job") == 0


def test_my_policies_show_active_restriction(client, make_user, auth_header):
    expires = utcnow() + timedelta(days=3)
    worker = make_user(
        restriction_type="limit",
        restriction_reason="Messaging restricted for 3 days",
        restriction_violation="spam_messages",
        restriction_expires_at=expires,
    )

    response = client.get("/policies/me", headers=auth_header(worker))

    assert response.status_code == 200
    assert response.json()["restrictions"] == {
        "type": "limit",
        "reason": "Messaging restricted for 3 days",
        "violation": "spam_messages",
        "expires_at": expires.isoformat(),
    }


def test_my_trust_score(client, make_user, auth_header):
    worker = make_user()

    response = client.get("/policies/me/trust", headers=auth_header(worker))

    assert response.status_code == 200
    assert response.json()["score"] == 100
    assert response.json()["level"] == "excellent"
    assert response.json()["history"] == []


# =============================================================================
# ADMIN
# =============================================================================

def test_admin_applies_violation(client, db_session, make_user, auth_header):
    admin = make_user(role=UserRole.ADMIN.value)
    worker = make_user()

    response = client.post(
        f"/admin/users/{worker.id}/violations",
        json={"violation": "no_show", "resource_id": "job-1"},
        headers=auth_header(admin),
    )

    assert response.status_code == 200
    assert response.json()["trust_score_impact"] == -20
    assert response.json()["applied"] is True

    standing = client.get(f"/admin/users/{worker.id}/standing", headers=auth_header(admin)).json()
    assert standing["trust_score"] == 80
    assert standing["active_policies"]["restrictions"]["violation"] == "no_show"
    assert [entry["violation"] for entry in standing["history"]] == ["no_show"]

    event = db_session.query(TrustEventDB).filter(TrustEventDB.user_id == worker.id).one()
    assert event.event_metadata["reported_by"] == admin.id


def test_admin_rejects_unknown_violation(client, make_user, auth_header):
    admin = make_user(role=UserRole.ADMIN.value)
    worker = make_user()

    response = client.post(
        f"/admin/users/{worker.id}/violations",
        json={"violation": "jaywalking"},
        headers=auth_header(admin),
    )

    assert response.status_code == 400
    assert "Unknown violation type: jaywalking" in response.json()["detail"]


def test_admin_routes_require_admin(client, make_user, auth_header):
    coordinator = make_user(role=UserRole.COORDINATOR.value)
    worker = make_user()

    response = client.post(
        f"/admin/users/{worker.id}/violations",
        json={"violation": "no_show"},
        headers=auth_header(coordinator),
    )

    assert response.status_code == 403


def test_admin_trust_event_and_unblock(client, make_user, auth_header):
    admin = make_user(role=UserRole.ADMIN.value)
    worker = make_user(is_blocked=True, blocked_reason="Forged documents")

    response = client.post(
        f"/admin/users/{worker.id}/trust-events",
        json={"event_type": "dispute_lost_worker"},
        headers=auth_header(admin),
    )
    assert response.status_code == 200
    assert response.json()["trust_score"] == 85

    response = client.post(f"/admin/users/{worker.id}/unblock", headers=auth_header(admin))
    assert response.json() == {"user_id": worker.id, "unblocked": True}

    response = client.post("/policies/check", json={"action": "edit_job"}, headers=auth_header(worker))
    assert response.json()["allowed"] is True


# =============================================================================
# SCHEDULER
# =============================================================================

def test_policy_sweep_requires_internal_key(client):
    response = client.post("/internal/policy-sweep", headers={"X-Internal-Key": "wrong"})
    assert response.status_code == 403


def test_policy_sweep_clears_expired(client, make_user):
    make_user(is_blocked=True, blocked_until=utcnow() - timedelta(minutes=5))

    response = client.post("/internal/policy-sweep", headers={"X-Internal-Key": INTERNAL_API_KEY})

    assert response.status_code == 200
    assert response.json()["task"] == "policy_sweep"
    assert response.json()["blocks_cleared"] == 1

    again = client.post("/internal/policy-sweep", headers={"X-Internal-Key": INTERNAL_API_KEY})
    assert again.json()["blocks_cleared"] == 0
