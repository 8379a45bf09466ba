"""
Policy engine exceptions.

Denials are NOT exceptions - they are ActionDecision(allowed=False) values.
These cover programmer errors, missing identities and store outages.
"""


class PolicyEngineError(Exception):
    """Base class for policy engine failures."""
    pass


class UnknownViolation(PolicyEngineError):
    """Raised when apply_policy is called with an unmapped violation kind."""

    def __init__(self, violation):
        self.violation = violation
        super().__init__(f"Unknown violation type: {violation}")


class StoreUnavailable(PolicyEngineError):
    """Raised when the backing store cannot be read or written. No decision is made."""
    pass


class Unauthenticated(PolicyEngineError):
    """Raised when no user can be resolved for a request."""
    pass
