"""
Shift Marketplace Policy Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base
from ..timeutils import utcnow


# =============================================================================
# ENUMS FOR MARKETPLACE / POLICY SYSTEM
# =============================================================================

class UserRole(str, Enum):
    """Marketplace roles."""
    CLIENT = "client"
    WORKER = "worker"
    COORDINATOR = "coordinator"
    ADMIN = "admin"


class IdentityStatus(str, Enum):
    """Identity document verification status."""
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class JobStatus(str, Enum):
    """Lifecycle status of a posted job."""
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Action(str, Enum):
    """Every sensitive, mutating action gated by the ActionGuard."""
    # Client actions
    CREATE_JOB = "create_job"
    EDIT_JOB = "edit_job"
    CANCEL_JOB = "cancel_job"
    ACCEPT_APPLICATION = "accept_application"
    RATE_WORKER = "rate_worker"
    # Worker actions
    APPLY_TO_JOB = "apply_to_job"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    RATE_CLIENT = "rate_client"
    # Common actions
    SEND_MESSAGE = "send_message"
    CREATE_DISPUTE = "create_dispute"
    SUBMIT_EVIDENCE = "submit_evidence"
    REQUEST_PAYOUT = "request_payout"


class ViolationKind(str, Enum):
    """Named categories of behaviour that trigger a fixed sanction."""
    # Client violations
    UNPAID_JOB = "unpaid_job"                          # Job not paid within 24h
    LATE_PAYMENT = "late_payment"                      # Paid 24-48h late
    LATE_CANCELLATION_HIGH = "late_cancellation_high"  # Cancelled <2h before start
    LATE_CANCELLATION_MED = "late_cancellation_med"    # Cancelled 2-12h before start
    LATE_CANCELLATION_LOW = "late_cancellation_low"    # Cancelled 12-24h before start
    DISPUTE_LOST = "dispute_lost"
    SPAM_CONTENT = "spam_content"                      # Contacts/links in job description
    FAKE_COMPANY = "fake_company"                      # Non-existent or foreign tax id
    # Worker violations
    NO_SHOW = "no_show"
    LATE_ARRIVAL = "late_arrival"                      # More than 30 minutes late
    EARLY_LEAVE = "early_leave"
    SPAM_MESSAGES = "spam_messages"
    FAKE_DOCUMENTS = "fake_documents"


class EffectType(str, Enum):
    """Concrete sanctions a policy rule can apply."""
    BLOCK = "block"
    LIMIT = "limit"
    REQUIRE_PREPAYMENT = "require_prepayment"
    MANUAL_REVIEW = "manual_review"
    WARNING = "warning"


class RestrictionKind(str, Enum):
    """Kinds of action restriction held on a standing record."""
    LIMIT = "limit"


class TrustEventType(str, Enum):
    """Kinds of trust ledger entries. Violations reuse their ViolationKind value."""
    # Client positive
    PAID_ON_TIME = "paid_on_time"
    COMPLETED_JOB_CLIENT = "completed_job_client"
    COMPANY_VERIFIED = "company_verified"
    # Worker positive
    COMPLETED_JOB_WORKER = "completed_job_worker"
    POSITIVE_RATING = "positive_rating"
    PASSPORT_VERIFIED = "passport_verified"
    # Negative, recorded outside the policy engine
    DISPUTE_LOST_WORKER = "dispute_lost_worker"


class TrustEventSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# PROFILE STORE
# =============================================================================

class UserDB(Base):
    """User account with the profile fields read by the action guard."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.WORKER.value)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Read-only demo accounts can browse but never mutate
    is_demo = Column(Boolean, default=False, nullable=False)

    # ==========================================================================
    # VERIFICATION - feeds resource-state predicates
    # ==========================================================================
    phone = Column(String(20), nullable=True)
    phone_verified = Column(Boolean, default=False, nullable=False)
    identity_status = Column(String(20), default=IdentityStatus.UNVERIFIED.value, nullable=False)

    # ==========================================================================
    # COUNTERS
    # ==========================================================================
    unpaid_debts = Column(Integer, default=0, nullable=False)  # Outstanding amount, minor units
    completed_jobs = Column(Integer, default=0, nullable=False)

    # Relationships
    standing = relationship(
        "StandingRecordDB", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    jobs = relationship("JobDB", back_populates="owner")


class StandingRecordDB(Base):
    """
    Per-user record of currently active sanctions.

    Mutated only by PolicyEnforcementEngine effects and the expiry sweep.
    A null *_until / expires_at means permanent.
    """
    __tablename__ = "standing_records"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    # Block
    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_reason = Column(Text, nullable=True)
    blocked_at = Column(DateTime, nullable=True)
    blocked_until = Column(DateTime, nullable=True, index=True)

    # Single active restriction descriptor
    restriction_type = Column(String(20), nullable=True)
    restriction_reason = Column(Text, nullable=True)
    restriction_violation = Column(String(50), nullable=True)
    restriction_expires_at = Column(DateTime, nullable=True, index=True)

    # Prepayment (enforced by payment initiation, surfaced here)
    requires_prepayment = Column(Boolean, default=False, nullable=False)
    prepayment_reason = Column(Text, nullable=True)
    prepayment_until = Column(DateTime, nullable=True, index=True)

    # Manual review (enforced by moderation, surfaced here)
    requires_manual_review = Column(Boolean, default=False, nullable=False)
    manual_review_reason = Column(Text, nullable=True)
    manual_review_until = Column(DateTime, nullable=True, index=True)

    # Write-through cache, refreshed by TrustScoreService.record_event
    trust_score = Column(Integer, nullable=False, default=100)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("UserDB", back_populates="standing")


# =============================================================================
# APPEND-ONLY LEDGERS
# =============================================================================

class TrustEventDB(Base):
    """Signed-impact trust event. Immutable, append-only."""
    __tablename__ = "trust_events"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    severity = Column(String(10), nullable=False, default=TrustEventSeverity.LOW.value)
    impact = Column(Integer, nullable=False)
    resource_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class PolicyEnforcementLogDB(Base):
    """Immutable record of each applied policy."""
    __tablename__ = "policy_enforcement_log"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    violation = Column(String(50), nullable=False)
    trust_score_impact = Column(Integer, nullable=False)
    effects = Column(JSON, nullable=False)
    resource_id = Column(String(36), nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ActionAuditLogDB(Base):
    """Dispatched action. Append-only, used only for windowed counting."""
    __tablename__ = "action_audit_log"
    __table_args__ = (
        Index("ix_action_audit_user_action_created", "user_id", "action", "created_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(50), nullable=False)
    resource_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class NotificationDB(Base):
    """User-facing notification written by the notification dispatcher."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    action_url = Column(String(255), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# RESOURCE STORE
# =============================================================================

class JobDB(Base):
    """A job (shift) posted by a client."""
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(JobStatus), nullable=False, default=JobStatus.OPEN)
    start_time = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("UserDB", back_populates="jobs")
    assignments = relationship("JobAssignmentDB", back_populates="job", cascade="all, delete-orphan")
    applications = relationship("JobApplicationDB", back_populates="job", cascade="all, delete-orphan")
    messages = relationship("JobMessageDB", back_populates="job", cascade="all, delete-orphan")


class JobAssignmentDB(Base):
    """A worker assigned to a job, with check-in markers."""
    __tablename__ = "job_assignments"
    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_job_assignment_worker"),
    )

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    job = relationship("JobDB", back_populates="assignments")


class JobApplicationDB(Base):
    """One application per worker per job."""
    __tablename__ = "job_applications"
    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_job_application_worker"),
    )

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(ApplicationStatus), nullable=False, default=ApplicationStatus.PENDING)
    cover_note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    job = relationship("JobDB", back_populates="applications")


class JobMessageDB(Base):
    """Chat message between job participants."""
    __tablename__ = "job_messages"

    id = Column(String(36), primary_key=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    job = relationship("JobDB", back_populates="messages")
