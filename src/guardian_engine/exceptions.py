"""
Error taxonomy for the decision engine.

- ValidationError: caller supplied something invalid. Never retried.
- UpstreamUnavailable: an external source failed. Callers degrade to
  empty or cached data and keep going.
- PersistenceError: the record store failed. Only the affected transition
  is aborted; no partial state change survives.
- ConfigurationMissing: a budget or category is not configured. Treated as
  "no policy", never as a failure.
"""


class GuardianError(Exception):
    """Base exception for all decision engine errors."""

    pass


class ValidationError(GuardianError):
    """Invalid input supplied by a caller."""

    pass


class InvalidTransitionError(ValidationError):
    """Requested state transition is not allowed from the current status."""

    def __init__(self, record_id: str, current_status: str, action: str):
        self.record_id = record_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} record '{record_id}' in status '{current_status}'"
        )


class RecordNotFoundError(ValidationError):
    """Decision record does not exist."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Decision record '{record_id}' not found")


class UpstreamUnavailable(GuardianError):
    """An external collaborator (source, registry, LLM) is unreachable."""

    pass


class PersistenceError(GuardianError):
    """The record store failed to read or write."""

    pass


class ConfigurationMissing(GuardianError):
    """No budget or category is configured for a label."""

    def __init__(self, category_label: str):
        self.category_label = category_label
        super().__init__(f"No category configured for '{category_label}'")
