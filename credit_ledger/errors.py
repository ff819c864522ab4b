"""
Error taxonomy for the credit ledger.

Every error raised by the ledger derives from ``LedgerServiceError`` and
belongs to exactly one category. The category fixes the HTTP status the API
answers with; leaves only refine the message and let callers catch narrowly.
"""


class LedgerServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerServiceError):
    status_code = 400


class AuthError(LedgerServiceError):
    status_code = 401


class ForbiddenError(LedgerServiceError):
    status_code = 403


class NotFoundError(LedgerServiceError):
    status_code = 404


class ConflictError(LedgerServiceError):
    status_code = 409


class UpstreamError(LedgerServiceError):
    status_code = 502


class InvalidAmountError(ValidationError):
    pass


class InvalidReferenceError(ValidationError):
    pass


class NothingToSettleError(ValidationError):
    pass


class NoPayoutAddressError(ValidationError):
    pass


class NoPendingEarningsError(ValidationError):
    pass


class ClaimMisalignedError(ValidationError):
    pass


class UnauthenticatedError(AuthError):
    pass


class NotContentOwnerError(ForbiddenError):
    pass


class NotCreatorError(ForbiddenError):
    pass


class LedgerNotFoundError(NotFoundError):
    pass


class ContentNotFoundError(NotFoundError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class PurchaseNotFoundError(NotFoundError):
    pass


class AlreadyPurchasedError(ConflictError):
    pass


class DuplicateSettlementError(ConflictError):
    pass


class InsufficientCreditError(ConflictError):
    pass


class ExceedsAvailableError(ConflictError):
    pass


class InvalidStateTransitionError(ConflictError):
    pass


class EarningAlreadyClaimedError(ConflictError):
    pass


class PayoutUnreconciledError(ConflictError):
    pass


class PayoutFailedError(UpstreamError):
    pass


class TransferFailedError(Exception):
    """Raised by payout collaborators; the claim workflow wraps it in PayoutFailedError."""
