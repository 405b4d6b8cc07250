"""
Error types raised by the registration ledger and the CRUD helpers.

Each error carries the HTTP status the API answers with, so routes can
report them without a lookup table.
"""


class LedgerError(Exception):
    """Base class for every error the ledger reports to its caller."""
    status_code = 500

    def __init__(self, message, status_code=None):
        self.message = message
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidReference(LedgerError):
    """A document reference is missing or malformed. Raised before any store access."""
    status_code = 400

    def __init__(self, message="This registration has an invalid or missing tournament ID."):
        super().__init__(message)


class NotFound(LedgerError):
    status_code = 404

    def __init__(self, message="Tournament not found!"):
        super().__init__(message)


class CapacityExceeded(LedgerError):
    """Business-rule rejection: the tournament has no free slot."""
    status_code = 409

    def __init__(self, message="No slots left in this tournament."):
        super().__init__(message)


class StatusConflict(LedgerError):
    """The registration is already in the state the caller asked for."""
    status_code = 409


class TransactionAborted(LedgerError):
    """
    The store could not commit the atomic write.

    `reason` keeps the store's own message (contention, connectivity, a
    failed precondition) so callers can surface it unchanged.
    """
    status_code = 503

    def __init__(self, reason):
        self.reason = str(reason)
        super().__init__(f"Transaction aborted: {self.reason}")


class ValidationError(LedgerError):
    """Bad payload in one of the CRUD flows."""
    status_code = 400
