"""
Action Rule Table

One ActionRule per Action: minimum trust score, the restriction kinds that
block it, its rate limit and its resource-state predicate. Keeping all four
in a single record means a new Action cannot be added without deciding
every one of them; verify_action_rules() fails at import otherwise.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, FrozenSet, Optional

from ...models.db_models import Action, RestrictionKind
from ...models.decisions import ActionDecision
from .resource_rules import (
    ResourceContext, ResourceFact,
    check_create_job, check_apply_to_job, check_cancel_job, check_send_message,
)


# Users with more completed jobs than this get double rate-limit allowance
EXPERIENCED_COMPLETED_JOBS = 10
EXPERIENCED_RATE_MULTIPLIER = 2

HOUR = timedelta(hours=1)
DAY = timedelta(hours=24)

ResourceCheck = Callable[[ResourceContext], Optional[ActionDecision]]


@dataclass(frozen=True)
class RateLimit:
    window: timedelta
    max_count: int

    @property
    def window_hours(self) -> float:
        hours = self.window.total_seconds() / 3600
        return int(hours) if hours.is_integer() else hours


@dataclass(frozen=True)
class ActionRule:
    min_trust_score: int
    rate_limit: RateLimit
    restricted_by: FrozenSet[RestrictionKind] = frozenset()
    resource_check: Optional[ResourceCheck] = None
    requires: FrozenSet[ResourceFact] = frozenset()


_LIMITED = frozenset({RestrictionKind.LIMIT})

ACTION_RULES: Dict[Action, ActionRule] = {
    # ===== CLIENT =====
    Action.CREATE_JOB: ActionRule(
        min_trust_score=50,
        rate_limit=RateLimit(DAY, 10),
        restricted_by=_LIMITED,
        resource_check=check_create_job,
        requires=frozenset({ResourceFact.OPEN_JOB_COUNT}),
    ),
    Action.EDIT_JOB: ActionRule(min_trust_score=40, rate_limit=RateLimit(HOUR, 5)),
    Action.CANCEL_JOB: ActionRule(
        min_trust_score=40,
        rate_limit=RateLimit(DAY, 3),
        resource_check=check_cancel_job,
        requires=frozenset({ResourceFact.JOB}),
    ),
    Action.ACCEPT_APPLICATION: ActionRule(min_trust_score=50, rate_limit=RateLimit(HOUR, 20)),
    Action.RATE_WORKER: ActionRule(min_trust_score=30, rate_limit=RateLimit(HOUR, 10)),

    # ===== WORKER =====
    Action.APPLY_TO_JOB: ActionRule(
        min_trust_score=30,
        rate_limit=RateLimit(DAY, 20),
        restricted_by=_LIMITED,
        resource_check=check_apply_to_job,
        requires=frozenset({ResourceFact.JOB, ResourceFact.PRIOR_APPLICATION}),
    ),
    Action.CHECK_IN: ActionRule(min_trust_score=30, rate_limit=RateLimit(HOUR, 5)),
    Action.CHECK_OUT: ActionRule(min_trust_score=30, rate_limit=RateLimit(HOUR, 5)),
    Action.RATE_CLIENT: ActionRule(min_trust_score=30, rate_limit=RateLimit(HOUR, 10)),

    # ===== COMMON =====
    Action.SEND_MESSAGE: ActionRule(
        min_trust_score=40,
        rate_limit=RateLimit(HOUR, 50),
        restricted_by=_LIMITED,
        resource_check=check_send_message,
        requires=frozenset({ResourceFact.JOB}),
    ),
    Action.CREATE_DISPUTE: ActionRule(min_trust_score=30, rate_limit=RateLimit(DAY, 3)),
    Action.SUBMIT_EVIDENCE: ActionRule(min_trust_score=20, rate_limit=RateLimit(HOUR, 10)),
    Action.REQUEST_PAYOUT: ActionRule(
        min_trust_score=30,
        rate_limit=RateLimit(DAY, 5),
        restricted_by=_LIMITED,
    ),
}


def verify_action_rules(rules: Dict[Action, ActionRule]) -> None:
    """Every Action must have exactly one complete rule."""
    missing = [action.value for action in Action if action not in rules]
    if missing:
        raise RuntimeError(f"Action rules missing for: {', '.join(missing)}")
    for action, rule in rules.items():
        if rule.resource_check is None and rule.requires:
            raise RuntimeError(f"Action rule {action.value} loads facts but has no resource check")


def get_action_rule(action: Action) -> ActionRule:
    return ACTION_RULES[Action(action)]


def effective_max_count(rule: ActionRule, completed_jobs: int) -> int:
    if completed_jobs > EXPERIENCED_COMPLETED_JOBS:
        return rule.rate_limit.max_count * EXPERIENCED_RATE_MULTIPLIER
    return rule.rate_limit.max_count


verify_action_rules(ACTION_RULES)
