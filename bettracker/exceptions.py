"""
Custom exceptions for the bet tracker ledger and statistics engine.
"""


class BetTrackerError(Exception):
    """Base exception for all custom errors."""
    pass


# Lookup Errors
class NotFoundError(BetTrackerError):
    """Raised when an entity is absent or not visible to the caller."""
    def __init__(self, entity: str = "record", entity_id=None, tenant_id: str = None):
        self.entity = entity
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        msg = f"{entity.capitalize()} not found"
        if entity_id is not None:
            msg += f": {entity_id}"
        if tenant_id:
            msg += f" (tenant {tenant_id})"
        super().__init__(msg)


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id=None, tenant_id: str = None):
        super().__init__("user", user_id, tenant_id)


class BetNotFoundError(NotFoundError):
    def __init__(self, bet_id=None, tenant_id: str = None):
        super().__init__("bet", bet_id, tenant_id)


class PickNotFoundError(NotFoundError):
    def __init__(self, pick_id=None, tenant_id: str = None):
        super().__init__("pick", pick_id, tenant_id)


class BankrollNotFoundError(NotFoundError):
    def __init__(self, bankroll_id=None, tenant_id: str = None):
        super().__init__("bankroll", bankroll_id, tenant_id)


class ForbiddenError(BetTrackerError):
    """Raised when the caller does not own (or author) the record."""
    pass


# Validation Errors
class InvalidInputError(BetTrackerError, ValueError):
    """Raised for malformed odds, amounts, results or filters."""
    pass


class InvalidOddsError(InvalidInputError):
    """Raised when American odds are zero or not an integer."""
    def __init__(self, odds=None):
        self.odds = odds
        super().__init__(f"Invalid American odds: {odds!r}")


class InvalidAmountError(InvalidInputError):
    """Raised when a stake or transaction amount is not strictly positive."""
    def __init__(self, amount=None, field: str = "amount"):
        self.amount = amount
        self.field = field
        super().__init__(f"Invalid {field}: {amount!r} (must be > 0)")


class InvalidResultError(InvalidInputError):
    """Raised when a settlement result is not won, lost or push."""
    def __init__(self, result=None):
        self.result = result
        super().__init__(f"Invalid result {result!r}. Must be won, lost, or push")


class InvalidTransactionTypeError(InvalidInputError):
    """Raised when a manual transaction type is unknown."""
    pass


# Settlement & Ledger Errors
class AlreadySettledError(BetTrackerError):
    """Raised on an attempt to re-settle a terminal bet or pick."""
    def __init__(self, kind: str, record_id, result: str = None):
        self.kind = kind
        self.record_id = record_id
        self.result = result
        msg = f"{kind.capitalize()} {record_id} is already settled"
        if result:
            msg += f" ({result})"
        super().__init__(msg)


class NoActiveBankrollError(BetTrackerError):
    """Raised when a user has no active bankroll to post a settlement to."""
    def __init__(self, user_id=None, tenant_id: str = None):
        self.user_id = user_id
        self.tenant_id = tenant_id
        super().__init__(f"No active bankroll for user {user_id} in tenant {tenant_id}")


class InsufficientBankrollError(BetTrackerError):
    """Raised when a withdrawal exceeds the current balance."""
    pass


# Storage Errors
class StorageError(BetTrackerError):
    """Base exception for record-store failures."""
    pass


class StorageConflictError(StorageError):
    """Raised when a conditional write lost a race. Callers may retry."""
    pass


class StorageUnavailableError(StorageError):
    """Raised on transient infrastructure faults. Retry with backoff."""
    pass
