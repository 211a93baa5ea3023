from rest_framework import status

from infrachain_backend.exceptions import InfrachainError


class ContractUnavailable(InfrachainError):
    """Contracts are not configured or the node cannot be reached."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Blockchain contracts are not available"


class ChainReadError(InfrachainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Failed to read from blockchain"
