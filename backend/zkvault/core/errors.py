"""
Error Taxonomy — ZK Vault Bridge.

Every failure on the request path is raised as a VaultBridgeError subclass
and rendered by the API layer as ``{"error": ..., "message": ...}`` with the
subclass status code. Ingestion failures use the same classes but are
isolated per log entry by the webhook handler instead of being surfaced.
"""

from typing import Any, Dict


class VaultBridgeError(Exception):
    """Base class for all bridge failures."""

    error: str = "Request failed"
    status_code: int = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class NotFound(VaultBridgeError):
    """Unknown username, address or transaction."""
    error = "Not found"
    status_code = 404


class AlreadyRegistered(VaultBridgeError):
    """The identity hash already has a Registered event in the ledger."""
    error = "User already registered"


class MalformedProof(VaultBridgeError):
    """Proof object is missing a point group or a coordinate."""
    error = "Malformed proof"


class RelayError(VaultBridgeError):
    """Base class for sponsored submission failures."""
    error = "Relay failed"


class EstimationFailed(RelayError):
    """Bundler could not estimate the user operation gas."""
    error = "Gas estimation failed"


class SubmissionRejected(RelayError):
    """Bundler or paymaster refused the user operation."""
    error = "Failed to send transaction"


class ReceiptTimeout(RelayError):
    """No user operation receipt before the configured deadline."""
    error = "Transaction receipt timed out"


class ReceiptFailed(RelayError):
    """The user operation was included but reverted, or the wait call failed."""
    error = "Transaction failed"


class StoreWriteFailed(VaultBridgeError):
    """Ledger upsert failed."""
    error = "Ledger write failed"


class EventDecodeError(VaultBridgeError):
    """A log matched a known event signature but its payload did not decode."""
    error = "Event decode failed"


class ChainReadError(VaultBridgeError):
    """Chain-data provider read (block, transaction, contract) failed."""
    error = "Chain read failed"


class StoreReadFailed(VaultBridgeError):
    """Ledger query failed."""
    error = "Failed to fetch"


class InvalidRequest(VaultBridgeError):
    """Request body or path parameter failed validation."""
    error = "Invalid request"
