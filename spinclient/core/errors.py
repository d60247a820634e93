"""Exception hierarchy for the spin client."""

from __future__ import annotations

from typing import Any


class SpinClientError(Exception):
    """Base exception for spin client errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RpcError(SpinClientError):
    """JSON-RPC call failed or returned an error object."""

    def __init__(self, message: str, code: int | None = None, data: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.data = data


class ContractCallError(RpcError):
    """Read call reverted or returned undecodable data."""


class TransactionFailedError(SpinClientError):
    """Transaction was mined with a non-success status."""

    def __init__(self, tx_hash: str, status: int | None):
        super().__init__(
            f"Transaction {tx_hash} failed with status={status}",
            details={"tx_hash": tx_hash, "status": status},
        )
        self.tx_hash = tx_hash
        self.status = status


class ReceiptTimeoutError(SpinClientError):
    """No receipt appeared for a submitted transaction in time."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(
            f"Timed out after {timeout:.0f}s waiting for receipt of {tx_hash}",
            details={"tx_hash": tx_hash, "timeout": timeout},
        )
        self.tx_hash = tx_hash


class DecryptionError(SpinClientError):
    """Decryption response could not be used."""


class MissingHandleError(DecryptionError):
    """A requested handle is absent from a decryption response."""

    def __init__(self, handle: str, available: list[str]):
        super().__init__(
            f"Handle {handle} not found in decryption result. "
            f"Available handles: {', '.join(available) or '(none)'}",
            details={"handle": handle, "available": available},
        )
        self.handle = handle
        self.available = available
