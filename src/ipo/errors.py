class IPOError(Exception):
    """Base class for failures reported by the IPO engine."""


class NotFoundError(IPOError):
    """Application, user or catalog entry does not exist."""


class StateConflictError(IPOError):
    """Operation not allowed in the record's current state."""


class InsufficientFundsError(StateConflictError):
    """Balance too low to block the applied amount."""
