"""Shared types: ciphertext handles, clear values and authorization bundles."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from typing import Annotated, Any, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, StrictBool, StrictInt, StrictStr

from spinclient.core.errors import MissingHandleError

HANDLE_SIZE = 32
ADDRESS_SIZE = 20
SECONDS_PER_DAY = 86_400

ZERO_HANDLE = "0x" + "00" * HANDLE_SIZE
ZERO_ADDRESS = "0x" + "00" * ADDRESS_SIZE


def _to_bytes(value: str | bytes, kind: str, size: int) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value[:2].lower() == "0x" else value
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Invalid {kind}: {value!r}") from exc
    else:
        raise ValueError(f"Invalid {kind} type: {type(value).__name__}")
    if len(raw) != size:
        raise ValueError(f"Invalid {kind} width: expected {size} bytes, got {len(raw)}")
    return raw


def normalize_handle(value: str | bytes) -> str:
    """Return the canonical ``0x``-prefixed lower-case form of a handle."""
    return "0x" + _to_bytes(value, "handle", HANDLE_SIZE).hex()


def normalize_address(value: str | bytes) -> str:
    """Return the canonical lower-case form of an account or contract address."""
    return "0x" + _to_bytes(value, "address", ADDRESS_SIZE).hex()


def is_zero_handle(handle: str | bytes | None) -> bool:
    """True if ``handle`` is the all-zero sentinel meaning "no value assigned"."""
    if handle is None:
        return False
    return normalize_handle(handle) == ZERO_HANDLE


def handle_bytes(handle: str) -> bytes:
    return _to_bytes(handle, "handle", HANDLE_SIZE)


Handle = Annotated[str, BeforeValidator(normalize_handle)]
Address = Annotated[str, BeforeValidator(normalize_address)]
# Decrypted ebool, euint or eaddress; no coercion between them
ClearScalar = Union[StrictBool, StrictInt, StrictStr]


# ── Enums ────────────────────────────────────────────────────────────────────


class OperationFamily(str, enum.Enum):
    """Orchestrator operation families guarded against re-entry."""

    REFRESH = "refresh"
    SPIN = "spin"
    DECRYPT = "decrypt"


class OperationState(str, enum.Enum):
    """Lifecycle state of one operation family."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"


# ── Handles and clear values ─────────────────────────────────────────────────


class RewardHandle(BaseModel):
    """Ciphertext handles of the user's pending reward level and amount."""

    model_config = ConfigDict(frozen=True)

    level_handle: Handle
    reward_handle: Handle


class ClearValue(BaseModel):
    """Decrypted value paired with the handle it was decrypted from."""

    model_config = ConfigDict(frozen=True)

    handle: Handle
    value: ClearScalar

    def matches(self, handle: str | None) -> bool:
        if handle is None:
            return False
        return self.handle == normalize_handle(handle)


class HandleContractPair(BaseModel):
    """One entry of a user-decrypt request batch."""

    model_config = ConfigDict(frozen=True)

    handle: Handle
    contract_address: Address


class EncryptedInput(BaseModel):
    """Output of an encrypted input builder: handles plus the input proof."""

    model_config = ConfigDict(frozen=True)

    handles: tuple[Handle, ...]
    input_proof: bytes


class TypedDataPayload(BaseModel):
    """EIP-712 payload a signer is asked to sign."""

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]


class DecryptionSignature(BaseModel):
    """Time-boxed authorization to decrypt handles of a set of contracts.

    Immutable once issued. Valid only for ``user_address``, for exactly the
    declared ``contract_addresses`` and while
    ``now < start_timestamp + duration_days``.
    """

    model_config = ConfigDict(frozen=True)

    public_key: str
    private_key: str
    signature: str
    contract_addresses: tuple[Address, ...]
    user_address: Address
    start_timestamp: int
    duration_days: int

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def covers(self, user_address: str, contract_addresses: Iterable[str]) -> bool:
        """True if issued for this user and exactly this address set."""
        requested = {normalize_address(a) for a in contract_addresses}
        return (
            normalize_address(user_address) == self.user_address
            and requested == set(self.contract_addresses)
        )


class DecryptionResult(Mapping[str, ClearScalar]):
    """Typed mapping from handle to clear value returned by user decryption.

    Keys are normalized on the way in, so lookups are insensitive to case and
    to bytes-versus-hex representation.
    """

    def __init__(self, values: Mapping[str | bytes, ClearScalar] | None = None) -> None:
        self._values: dict[str, ClearScalar] = {
            normalize_handle(k): v for k, v in (values or {}).items()
        }

    def __getitem__(self, handle: str) -> ClearScalar:
        return self._values[normalize_handle(handle)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"DecryptionResult({self._values!r})"

    def available(self) -> list[str]:
        return list(self._values)

    def require(self, handle: str) -> ClearScalar:
        """Return the clear value of ``handle`` or raise ``MissingHandleError``."""
        key = normalize_handle(handle)
        if key not in self._values:
            raise MissingHandleError(key, self.available())
        return self._values[key]


class TransactionReceipt(BaseModel):
    """Subset of a mined transaction receipt."""

    tx_hash: str
    status: int | None = None
    block_number: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


# ── Orchestrator snapshot ────────────────────────────────────────────────────


class SpinMachineState(BaseModel):
    """Read-only view of the orchestrator's session state."""

    chain_id: int | None = None
    contract_address: str | None = None
    is_deployed: bool | None = None
    reward_handle: RewardHandle | None = None
    random_result_handle: str | None = None
    clear_reward: ClearValue | None = None
    clear_random_result: ClearValue | None = None
    is_refreshing: bool = False
    is_spinning: bool = False
    is_decrypting: bool = False
    can_refresh: bool = False
    can_spin: bool = False
    can_decrypt: bool = False
    can_decrypt_random: bool = False
    is_decrypted: bool = False
    message: str = ""
