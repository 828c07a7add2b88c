"""
Service-layer exceptions.

All subclass ValueError so routes can keep the existing
``except ValueError -> 400`` fallback while mapping the specific
subclasses to their own status codes.
"""

from typing import Optional

from movetogether.utils.constants import LEAVE_CURRENCY, LEAVE_PRICE, LEAVE_PRODUCT_ID


class ValidationError(ValueError):
    """Raised when input or entity state makes an operation invalid."""


class NotFoundError(ValueError):
    """Raised when a referenced entity does not exist."""


class CompetitionNotFoundError(NotFoundError):
    """Raised when a competition ID does not exist."""

    def __init__(self, message: str = "Competition not found"):
        super().__init__(message)


class ParticipantNotFoundError(NotFoundError):
    """Raised when a user is not a participant of the competition."""

    def __init__(self, message: str = "You are not a participant in this competition"):
        super().__init__(message)


class InvitationNotFoundError(NotFoundError):
    """Raised when an invitation ID does not exist."""

    def __init__(self, message: str = "Invitation not found"):
        super().__init__(message)


class AuthorizationError(ValueError):
    """Raised when the requester is not allowed to perform the operation."""


class CreatorCannotLeaveError(AuthorizationError):
    """Raised when a competition creator tries to leave their own competition."""

    def __init__(
        self,
        message: str = "Competition creators cannot leave. Please delete the competition instead.",
    ):
        super().__init__(message)


class PaymentRequiredError(ValueError):
    """
    Raised when leaving requires a one-time payment.

    Non-terminal: the client pays and retries with a transaction ID.
    """

    def __init__(
        self,
        message: str = (
            "Free users must pay $2.99 to leave a competition. "
            "Upgrade to Mover or Crusher for free withdrawals."
        ),
        amount: float = LEAVE_PRICE,
        currency: str = LEAVE_CURRENCY,
        product_id: str = LEAVE_PRODUCT_ID,
    ):
        super().__init__(message)
        self.amount = amount
        self.currency = currency
        self.product_id = product_id


class PaymentVerificationError(PaymentRequiredError):
    """
    Raised when a supplied receipt could not be verified.

    ``retryable`` is True when the verifier was unreachable rather than
    rejecting the receipt.
    """

    def __init__(self, message: str = "Payment verification failed", retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(ValueError):
    """Raised when a database write fails after all checks passed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
