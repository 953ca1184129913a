###########EXTERNAL IMPORTS############

from typing import Optional

#######################################

#############LOCAL IMPORTS#############

#######################################

##########     S T O R E     E X C E P T I O N S     ##########


class StoreError(Exception):
    """
    Base error for every failure surfaced by the message store.

    Attributes:
        message (str): Human readable description.
        cause (Optional[BaseException]): Underlying backend or driver error, if any.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


##########     M E S S A G E     E X C E P T I O N S     ##########


class InvalidMessage(StoreError):
    """Raised when a message cannot be stored as given or does not match the target repository kind."""

    pass


class InvalidKey(InvalidMessage):
    """Raised when a payload key contains the path separator or uses a reserved field name."""

    pass


class InvalidQuery(StoreError):
    """Raised when page metadata or aggregation parameters are invalid or unsupported by the backend."""

    pass


##########     S C H E M A     E X C E P T I O N S     ##########


class SchemaMissing(StoreError):
    """Raised when the table for a JSON format does not exist."""

    pass


##########     B A C K E N D     E X C E P T I O N S     ##########


class SaveFailed(StoreError):
    """Raised when messages could not be written to the backend."""

    pass


class ReadFailed(StoreError):
    """Raised when messages could not be read from the backend."""

    pass


class DeleteFailed(StoreError):
    """Raised when messages could not be deleted from the backend."""

    pass


class TransactionRollbackFailed(StoreError):
    """
    Raised when rolling back a failed transaction fails as well.

    The outcome of the transaction is unknown to the caller, so both errors are kept.

    Attributes:
        original (BaseException): Error that caused the rollback.
        rollback (BaseException): Error raised by the rollback itself.
    """

    def __init__(self, original: BaseException, rollback: BaseException):
        super().__init__(f"Transaction rollback failed ({rollback}) after error", cause=original)
        self.original = original
        self.rollback = rollback
