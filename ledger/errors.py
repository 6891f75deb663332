from typing import Any, Optional


class LedgerServiceError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)


class InsufficientFundsError(LedgerServiceError):
    code = "INSUFFICIENT_FUNDS"


class InvalidStateTransitionError(LedgerServiceError):
    code = "INVALID_STATE"
    status_code = 409


class NotFoundError(LedgerServiceError):
    code = "NOT_FOUND"
    status_code = 404


class AlreadyProcessedError(InvalidStateTransitionError):
    """Raised when a transition that already happened is requested again.

    ``result`` holds the record as it stood after the first application so
    callers retrying a request can recover the original outcome.
    """

    code = "ALREADY_PROCESSED"
    status_code = 409

    def __init__(self, message: str, result: Optional[Any] = None, **context: Any):
        self.result = result
        super().__init__(message, **context)


class AlreadyValidatedError(AlreadyProcessedError):
    code = "ALREADY_VALIDATED"


class IdempotencyConflictError(LedgerServiceError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409


class InvalidTargetError(LedgerServiceError):
    code = "INVALID_TARGET"


class InvalidAmountError(LedgerServiceError):
    code = "INVALID_AMOUNT"


class ExpiredError(LedgerServiceError):
    code = "EXPIRED"
    status_code = 410


class LimitExceededError(LedgerServiceError):
    code = "LIMIT_EXCEEDED"
    status_code = 429


class PermissionDeniedError(LedgerServiceError):
    code = "FORBIDDEN"
    status_code = 403


class InviteError(LedgerServiceError):
    code = "INVALID_INVITE"


class InvalidInviteCodeError(InviteError):
    code = "INVALID_INVITE_CODE"


class SelfInviteError(InviteError):
    code = "SELF_INVITE"


class DuplicateInviteError(InviteError):
    code = "ALREADY_INVITED"
    status_code = 409


class InviteCycleError(InviteError):
    code = "INVITE_CYCLE"


class InvalidRequestError(LedgerServiceError):
    code = "INVALID_REQUEST"
