"""
Enforcement System Services

Action authorization and policy enforcement for the shift marketplace.

- ActionAuditLedger: append-only log of dispatched actions, windowed counts
- TrustScoreService: bounded reputation from the trust event ledger
- PolicyEnforcementEngine: violation -> fixed sanction, sweep, active policies
- NotificationDispatcher: delivers sanction notices after commit
- ActionGuard: the single allow/deny gate before every sensitive action
"""

from .errors import PolicyEngineError, UnknownViolation, StoreUnavailable, Unauthenticated
from .action_ledger import ActionAuditLedger
from .trust_score import TrustScoreService
from .notifications import NotificationDispatcher
from .policy_engine import PolicyEnforcementEngine, POLICY_RULES
from .action_rules import ACTION_RULES, ActionRule, RateLimit
from .action_guard import ActionGuard

__all__ = [
    'PolicyEngineError',
    'UnknownViolation',
    'StoreUnavailable',
    'Unauthenticated',
    'ActionAuditLedger',
    'TrustScoreService',
    'NotificationDispatcher',
    'PolicyEnforcementEngine',
    'POLICY_RULES',
    'ACTION_RULES',
    'ActionRule',
    'RateLimit',
    'ActionGuard',
]
