"""Shift Marketplace Policy Engine - Data Models"""
from .db_models import (
    # Enums
    UserRole, IdentityStatus, JobStatus, ApplicationStatus, Action, ViolationKind,
    EffectType, RestrictionKind, TrustEventType, TrustEventSeverity,
)
from .decisions import (
    BlockedBy, IntentKind,
    ActionDecision, RequesterSnapshot, JobSnapshot,
    PolicyEffect, PolicyRule, NotificationIntent, PolicyResult, ActivePolicies,
)

__all__ = [
    "UserRole", "IdentityStatus", "JobStatus", "ApplicationStatus", "Action", "ViolationKind",
    "EffectType", "RestrictionKind", "TrustEventType", "TrustEventSeverity",
    "BlockedBy", "IntentKind",
    "ActionDecision", "RequesterSnapshot", "JobSnapshot",
    "PolicyEffect", "PolicyRule", "NotificationIntent", "PolicyResult", "ActivePolicies",
]
