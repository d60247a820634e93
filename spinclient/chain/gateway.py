"""SpinMachine contract gateway: confidential reads and the spin write."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_hash.auto import keccak

from spinclient.chain.rpc import RpcClient
from spinclient.chain.signer import Signer
from spinclient.core.config import Settings, get_settings
from spinclient.core.errors import ContractCallError, ReceiptTimeoutError, RpcError
from spinclient.core.types import (
    RewardHandle,
    TransactionReceipt,
    handle_bytes,
    normalize_address,
    normalize_handle,
)

logger = logging.getLogger(__name__)

GET_USER_REWARD = "getUserReward()"
GET_USER_RANDOM_RESULT = "getUserRandomResult()"
SPIN = "spin(bytes32,bytes)"


def function_selector(signature: str) -> bytes:
    """Return the 4-byte function selector for a canonical signature."""
    return keccak(signature.encode("utf-8"))[:4]


# ── Interfaces ───────────────────────────────────────────────────────────────


class PendingTransaction(Protocol):
    """A submitted transaction awaiting confirmation."""

    @property
    def hash(self) -> str: ...

    async def wait(self) -> TransactionReceipt: ...


class ContractGateway(Protocol):
    """Read/write surface of the confidential SpinMachine contract."""

    async def get_user_reward(
        self, contract_address: str, user_address: str | None
    ) -> RewardHandle: ...

    async def get_user_random_result(
        self, contract_address: str, user_address: str | None
    ) -> str: ...

    async def spin(
        self,
        contract_address: str,
        signer: Signer,
        encrypted_seed: str,
        input_proof: bytes,
    ) -> PendingTransaction: ...


# ── JSON-RPC implementation ──────────────────────────────────────────────────


class RpcPendingTransaction:
    """Polls ``eth_getTransactionReceipt`` until the transaction is mined."""

    def __init__(
        self,
        rpc: RpcClient,
        tx_hash: str,
        poll_interval: float = 1.0,
        timeout: float = 300.0,
    ) -> None:
        self._rpc = rpc
        self._hash = tx_hash
        self._poll_interval = poll_interval
        self._timeout = timeout

    @property
    def hash(self) -> str:
        return self._hash

    async def wait(self) -> TransactionReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            raw = await self._rpc.request("eth_getTransactionReceipt", [self._hash])
            if raw:
                return TransactionReceipt(
                    tx_hash=self._hash,
                    status=_hex_int(raw.get("status")),
                    block_number=_hex_int(raw.get("blockNumber")),
                )
            if loop.time() >= deadline:
                raise ReceiptTimeoutError(self._hash, self._timeout)
            await asyncio.sleep(self._poll_interval)


def _hex_int(value: str | int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


class JsonRpcGateway:
    """ContractGateway speaking plain JSON-RPC to an Ethereum node.

    Reads go through ``eth_call`` with ``from`` set to the user, because the
    contract resolves handles for ``msg.sender``. Writes are handed to the
    signer, which owns the account key.
    """

    def __init__(
        self,
        rpc: RpcClient,
        poll_interval: float = 1.0,
        receipt_timeout: float = 300.0,
    ) -> None:
        self._rpc = rpc
        self._poll_interval = poll_interval
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_settings(cls, rpc: RpcClient, settings: Settings | None = None) -> JsonRpcGateway:
        settings = settings or get_settings()
        return cls(
            rpc,
            poll_interval=settings.receipt_poll_interval,
            receipt_timeout=settings.receipt_timeout_seconds,
        )

    async def _call(self, contract_address: str, data: bytes, user_address: str | None) -> bytes:
        tx = {"to": normalize_address(contract_address), "data": "0x" + data.hex()}
        if user_address:
            tx["from"] = normalize_address(user_address)
        try:
            result = await self._rpc.request("eth_call", [tx, "latest"])
        except RpcError as exc:
            raise ContractCallError(
                f"eth_call to {tx['to']} reverted: {exc.message}", code=exc.code, data=exc.data
            ) from exc
        if not isinstance(result, str):
            raise ContractCallError(f"eth_call to {tx['to']} returned {result!r}")
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def get_user_reward(self, contract_address: str, user_address: str | None) -> RewardHandle:
        raw = await self._call(contract_address, function_selector(GET_USER_REWARD), user_address)
        try:
            level, reward = abi_decode(["bytes32", "bytes32"], raw)
        except DecodingError as exc:
            raise ContractCallError(f"getUserReward() returned undecodable data: {exc}") from exc
        return RewardHandle(level_handle=level, reward_handle=reward)

    async def get_user_random_result(self, contract_address: str, user_address: str | None) -> str:
        raw = await self._call(
            contract_address, function_selector(GET_USER_RANDOM_RESULT), user_address
        )
        try:
            (result,) = abi_decode(["bytes32"], raw)
        except DecodingError as exc:
            raise ContractCallError(
                f"getUserRandomResult() returned undecodable data: {exc}"
            ) from exc
        return normalize_handle(result)

    async def spin(
        self,
        contract_address: str,
        signer: Signer,
        encrypted_seed: str,
        input_proof: bytes,
    ) -> RpcPendingTransaction:
        data = function_selector(SPIN) + abi_encode(
            ["bytes32", "bytes"], [handle_bytes(encrypted_seed), input_proof]
        )
        tx_hash = await signer.send_transaction(
            {"to": normalize_address(contract_address), "data": "0x" + data.hex()}
        )
        logger.info("spin() submitted", extra={"tx_hash": tx_hash, "operation": "spin"})
        return RpcPendingTransaction(
            self._rpc,
            tx_hash,
            poll_interval=self._poll_interval,
            timeout=self._receipt_timeout,
        )
