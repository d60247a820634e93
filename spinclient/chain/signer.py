"""Account signers: typed-data signatures and transaction submission."""

from __future__ import annotations

import json
from typing import Any, Protocol

from spinclient.chain.rpc import RpcClient
from spinclient.core.types import TypedDataPayload, normalize_address

# EIP-712 domain fields in canonical order
_DOMAIN_FIELDS = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
)


class Signer(Protocol):
    """An account able to sign typed data and send transactions."""

    @property
    def address(self) -> str: ...

    async def sign_typed_data(self, payload: TypedDataPayload) -> str: ...

    async def send_transaction(self, tx: dict[str, Any]) -> str: ...


def signer_identity(signer: Signer | None) -> str | None:
    """Canonical identity of a signer, used for staleness comparison."""
    if signer is None:
        return None
    return normalize_address(signer.address)


def typed_data_document(payload: TypedDataPayload) -> dict[str, Any]:
    """Build the full ``eth_signTypedData_v4`` document, domain type included."""
    domain_type = [
        {"name": name, "type": kind} for name, kind in _DOMAIN_FIELDS if name in payload.domain
    ]
    return {
        "types": {"EIP712Domain": domain_type, **payload.types},
        "domain": payload.domain,
        "primaryType": payload.primary_type,
        "message": payload.message,
    }


class JsonRpcSigner:
    """Signer backed by a wallet or node that manages the account's key."""

    def __init__(self, rpc: RpcClient, address: str) -> None:
        self._rpc = rpc
        self._address = normalize_address(address)

    @property
    def address(self) -> str:
        return self._address

    async def sign_typed_data(self, payload: TypedDataPayload) -> str:
        document = typed_data_document(payload)
        return await self._rpc.request(
            "eth_signTypedData_v4",
            [self._address, json.dumps(document, default=str)],
        )

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        return await self._rpc.request("eth_sendTransaction", [{"from": self._address, **tx}])

    def __repr__(self) -> str:
        return f"JsonRpcSigner({self._address})"
