from rest_framework import status

from infrachain_backend.exceptions import InfrachainError, ValidationError  # noqa: F401


class DuplicateTransaction(InfrachainError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transaction already recorded"


class IncompleteEvidence(InfrachainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "evidenceHash and verifiedBy must be provided together"


class InvalidTransition(InfrachainError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Status transition not allowed"


class OverclaimDetected(InfrachainError):
    """Claimed interest exceeded the tracked pending amount.

    Raised after the claim is written; ``interest`` is the flagged row.
    """

    status_code = status.HTTP_409_CONFLICT
    default_message = "Claimed interest exceeds pending amount"

    def __init__(self, message=None, interest=None):
        super().__init__(message)
        self.interest = interest
