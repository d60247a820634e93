"""Shared fixtures and fakes for the spinclient test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from spinclient.chain.session import Session
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.types import (
    DecryptionResult,
    EncryptedInput,
    HandleContractPair,
    RewardHandle,
    TransactionReceipt,
    TypedDataPayload,
)
from spinclient.fhe.signature import MemorySignatureStorage, SignatureCache
from spinclient.orchestrator.spin import SpinOrchestrator

CHAIN_ID = 31337
OTHER_CHAIN_ID = 11155111
CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
USER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"
OTHER_USER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"


def h(n: int) -> str:
    """Build a 32-byte handle from an integer."""
    return "0x" + f"{n:064x}"


Hook = Callable[[], Any] | None


async def _run_hook(hook: Hook) -> None:
    if hook is None:
        return
    result = hook()
    if asyncio.iscoroutine(result):
        await result


# ── Fakes ────────────────────────────────────────────────────────────────


class FakeSigner:
    """Signer recording typed-data requests and transactions."""

    def __init__(self, address: str = USER):
        self.address = address
        self.sign_calls: list[TypedDataPayload] = []
        self.sent: list[dict[str, Any]] = []
        self.reject = False
        self.on_sign: Hook = None

    async def sign_typed_data(self, payload: TypedDataPayload) -> str:
        self.sign_calls.append(payload)
        await _run_hook(self.on_sign)
        if self.reject:
            raise PermissionError("User rejected the request")
        return "0x" + "ab" * 65

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        self.sent.append(tx)
        return "0x" + "cd" * 32


class FakePendingTransaction:
    def __init__(self, tx_hash: str, status: int = 1, error: Exception | None = None):
        self.hash = tx_hash
        self._status = status
        self._error = error

    async def wait(self) -> TransactionReceipt:
        if self._error:
            raise self._error
        return TransactionReceipt(tx_hash=self.hash, status=self._status, block_number=7)


class FakeGateway:
    """In-memory SpinMachine contract."""

    def __init__(self):
        self.reward = RewardHandle(level_handle=h(1), reward_handle=h(2))
        self.random_result: str | None = h(3)
        self.reward_error: Exception | None = None
        self.random_error: Exception | None = None
        self.spin_error: Exception | None = None
        self.receipt_status = 1
        self.receipt_error: Exception | None = None
        self.next_reward: RewardHandle | None = None
        self.next_random_result: str | None = None

        self.reward_calls = 0
        self.random_calls = 0
        self.spin_calls: list[tuple[str, str, bytes]] = []

        self.reward_gate: asyncio.Event | None = None
        self.on_reward_read: Hook = None
        self.on_random_read: Hook = None

    async def get_user_reward(self, contract_address: str, user_address: str | None) -> RewardHandle:
        self.reward_calls += 1
        if self.reward_gate is not None:
            await self.reward_gate.wait()
        await _run_hook(self.on_reward_read)
        if self.reward_error:
            raise self.reward_error
        return self.reward

    async def get_user_random_result(self, contract_address: str, user_address: str | None) -> str:
        self.random_calls += 1
        await _run_hook(self.on_random_read)
        if self.random_error:
            raise self.random_error
        if self.random_result is None:
            raise RuntimeError("execution reverted: no random result")
        return self.random_result

    async def spin(self, contract_address, signer, encrypted_seed, input_proof):
        self.spin_calls.append((contract_address, encrypted_seed, input_proof))
        if self.spin_error:
            raise self.spin_error
        # The contract assigns new handles once the spin is mined
        if self.next_reward is not None:
            self.reward = self.next_reward
        if self.next_random_result is not None:
            self.random_result = self.next_random_result
        return FakePendingTransaction(
            "0x" + "ee" * 32, status=self.receipt_status, error=self.receipt_error
        )


class FakeInputBuilder:
    def __init__(self, service: FakeEncryptionService, contract_address: str, user_address: str):
        self._service = service
        self.contract_address = contract_address
        self.user_address = user_address
        self.values: list[int] = []

    def add32(self, value: int) -> None:
        self.values.append(value)

    async def encrypt(self) -> EncryptedInput:
        self._service.encrypted.append((self.contract_address, self.user_address, list(self.values)))
        await _run_hook(self._service.on_encrypt)
        if self._service.encrypt_error:
            raise self._service.encrypt_error
        return EncryptedInput(handles=(h(0xABC),), input_proof=b"\x01proof")


class FakeEncryptionService:
    """Encryption service holding clear values in a dict."""

    def __init__(self):
        self.clear_values: dict[str, Any] = {h(2): 42, h(3): 7}
        self.omit: set[str] = set()
        self.decrypt_error: Exception | None = None
        self.encrypt_error: Exception | None = None
        self.decrypt_calls: list[list[HandleContractPair]] = []
        self.encrypted: list[tuple[str, str, list[int]]] = []
        self.keypairs = 0
        self.on_encrypt: Hook = None
        self.on_decrypt: Hook = None
        self.decrypt_gate: asyncio.Event | None = None

    def create_encrypted_input(self, contract_address: str, user_address: str) -> FakeInputBuilder:
        return FakeInputBuilder(self, contract_address, user_address)

    def generate_keypair(self) -> tuple[str, str]:
        self.keypairs += 1
        return f"pub-{self.keypairs}", f"priv-{self.keypairs}"

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> TypedDataPayload:
        return TypedDataPayload(
            domain={"name": "Decryption", "version": "1", "chainId": CHAIN_ID},
            types={
                "UserDecryptRequestVerification": [
                    {"name": "publicKey", "type": "bytes"},
                    {"name": "contractAddresses", "type": "address[]"},
                    {"name": "startTimestamp", "type": "uint256"},
                    {"name": "durationDays", "type": "uint256"},
                ]
            },
            primary_type="UserDecryptRequestVerification",
            message={
                "publicKey": public_key,
                "contractAddresses": list(contract_addresses),
                "startTimestamp": start_timestamp,
                "durationDays": duration_days,
            },
        )

    async def user_decrypt(self, requests, private_key, public_key, signature,
                           contract_addresses, user_address, start_timestamp, duration_days):
        self.decrypt_calls.append(list(requests))
        if self.decrypt_gate is not None:
            await self.decrypt_gate.wait()
        await _run_hook(self.on_decrypt)
        if self.decrypt_error:
            raise self.decrypt_error
        values = {
            r.handle: self.clear_values[r.handle]
            for r in requests
            if r.handle in self.clear_values and r.handle not in self.omit
        }
        return DecryptionResult(values)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """Minimal async Redis mock for signature storage tests."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self):
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._store[key] = value
        if ex:
            self._ttls[key] = ex

    async def delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            if key in self._store:
                del self._store[key]
                count += 1
        return count

    async def aclose(self):
        self._store.clear()


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def session(signer: FakeSigner) -> Session:
    return Session(chain_id=CHAIN_ID, signer=signer)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def encryption() -> FakeEncryptionService:
    return FakeEncryptionService()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signatures(encryption: FakeEncryptionService, clock: FakeClock) -> SignatureCache:
    return SignatureCache(encryption, storage=MemorySignatureStorage(), clock=clock)


@pytest.fixture
def orchestrator(
    session: Session,
    gateway: FakeGateway,
    encryption: FakeEncryptionService,
    signatures: SignatureCache,
) -> SpinOrchestrator:
    return SpinOrchestrator(
        session,
        gateway,
        encryption,
        signatures=signatures,
        deployments=DeploymentRegistry(),
        seed_source=lambda: 123456,
    )
