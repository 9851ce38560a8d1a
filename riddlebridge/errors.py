"""
Bridge Error Taxonomy

Every failure surfaced by the pipeline is a BridgeError carrying a stable
machine-readable code and the HTTP status the API layer responds with.
Chain adapter exceptions are converted into these at the orchestration
boundary and never reach callers directly.
"""


class BridgeError(Exception):
    """Base exception for bridge pipeline errors."""

    code = "BRIDGE_ERROR"
    status_code = 400

    def __init__(self, message: str, *, transaction_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.transaction_id = transaction_id

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidRouteError(BridgeError):
    """Unsupported chain/token pair."""

    code = "INVALID_ROUTE"


class ValidationError(BridgeError):
    """Malformed address or amount, or request data contradicting the stored record."""

    code = "VALIDATION_ERROR"


class PriceUnavailableError(BridgeError):
    """No exchange rate or USD price could be obtained."""

    code = "PRICE_UNAVAILABLE"
    status_code = 503


class VerificationError(BridgeError):
    """Inbound payment could not be confirmed."""

    code = "VERIFICATION_FAILED"
    status_code = 422


class VerificationTimeout(VerificationError):
    """The claimed payment was not final within the poll budget."""

    code = "VERIFICATION_TIMEOUT"
    status_code = 504


class VerificationMismatch(VerificationError):
    """The claimed payment does not match the deposit instructions."""

    code = "VERIFICATION_MISMATCH"


class ProofAlreadyUsedError(VerificationMismatch):
    """The inbound transaction hash already backs another bridge transaction."""

    code = "PROOF_ALREADY_USED"
    status_code = 409


class DistributionError(BridgeError):
    """The outbound payment failed; the transaction is eligible for restart."""

    code = "DISTRIBUTION_FAILED"
    status_code = 502


class AlreadyDistributedError(BridgeError):
    """The transaction already has an outbound payment."""

    code = "ALREADY_DISTRIBUTED"
    status_code = 409


class DistributionInProgressError(AlreadyDistributedError):
    """Another caller holds the distribution claim for this transaction."""

    code = "DISTRIBUTION_IN_PROGRESS"


class InvalidStateError(BridgeError):
    """Operation invoked against a transaction not in the required state."""

    code = "INVALID_STATE"
    status_code = 409


class RestartError(BridgeError):
    """The transaction cannot be restarted."""

    code = "RESTART_REJECTED"
    status_code = 409


class RetryLimitExceeded(RestartError):
    """The transaction used up its restarts."""

    code = "RETRY_LIMIT_EXCEEDED"


class TransactionNotFound(BridgeError):
    """No transaction with this id is visible to the caller."""

    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
