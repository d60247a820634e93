"""Interface of the confidential-computing encryption service.

The homomorphic cryptography is opaque to this package: an implementation
(relayer SDK binding, local mock, ...) is supplied by the caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from spinclient.core.types import (
    DecryptionResult,
    EncryptedInput,
    HandleContractPair,
    TypedDataPayload,
)


class EncryptedInputBuilder(Protocol):
    """Accumulates plaintext values bound to one (contract, user) pair."""

    def add32(self, value: int) -> None: ...

    async def encrypt(self) -> EncryptedInput: ...


class EncryptionService(Protocol):
    """Builds encrypted inputs and performs authorized user decryption."""

    def create_encrypted_input(
        self, contract_address: str, user_address: str
    ) -> EncryptedInputBuilder: ...

    def generate_keypair(self) -> tuple[str, str]:
        """Return a fresh ``(public_key, private_key)`` pair for reencryption."""
        ...

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> TypedDataPayload:
        """Return the typed-data request the user signs to authorize decryption."""
        ...

    async def user_decrypt(
        self,
        requests: Sequence[HandleContractPair],
        private_key: str,
        public_key: str,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: int,
        duration_days: int,
    ) -> DecryptionResult: ...
