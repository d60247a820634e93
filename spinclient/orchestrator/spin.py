"""SpinMachine orchestrator: coordinates refresh, spin and decrypt.

Three independent operation families share one mutable session state
(current handles, cached clear values, in-flight flags):

1. REFRESH: read the reward handles (mandatory) and the random-result
   handle (optional; absent until the user has spun once)
2. SPIN: encrypt a fresh 32-bit seed, submit ``spin`` and wait for the
   receipt, then drop cached clear values and refresh
3. DECRYPT: obtain a decryption signature and reveal the reward (and the
   random result when there is one)

Each family runs at most once at a time; a second call while one is in
flight returns immediately. Operations never raise: outcomes are reported
through ``message``. When the user switches network, contract or account
mid-flight, the operation discards its own result at the next resumption
point instead of writing it.
"""

from __future__ import annotations

import logging
import secrets
from collections import deque
from collections.abc import Callable

from spinclient.chain.gateway import ContractGateway, JsonRpcGateway
from spinclient.chain.rpc import RpcClient
from spinclient.chain.session import SessionContext
from spinclient.core.config import Settings, get_settings
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.errors import SpinClientError, TransactionFailedError
from spinclient.core.types import (
    ClearValue,
    DecryptionResult,
    HandleContractPair,
    OperationFamily,
    OperationState,
    RewardHandle,
    SpinMachineState,
    is_zero_handle,
    normalize_handle,
)
from spinclient.fhe.service import EncryptionService
from spinclient.fhe.signature import SignatureCache
from spinclient.orchestrator.guards import OperationFlags, SessionSnapshot, capture, is_stale

logger = logging.getLogger(__name__)

SEED_BITS = 32

HANDLE_CHANGED = "Decryption ignored: handle changed during decryption"

REFRESH = OperationFamily.REFRESH
SPIN = OperationFamily.SPIN
DECRYPT = OperationFamily.DECRYPT


def random_seed() -> int:
    """Seed drawn uniformly from the unsigned 32-bit range."""
    return secrets.randbits(SEED_BITS)


class SpinOrchestrator:
    """Client-side state machine for one user session against SpinMachine."""

    def __init__(
        self,
        session: SessionContext,
        gateway: ContractGateway | None,
        encryption: EncryptionService | None = None,
        signatures: SignatureCache | None = None,
        deployments: DeploymentRegistry | None = None,
        seed_source: Callable[[], int] = random_seed,
        history_size: int = 50,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._encryption = encryption
        if signatures is None and encryption is not None:
            signatures = SignatureCache(encryption)
        self._signatures = signatures
        self._deployments = deployments or DeploymentRegistry()
        self._seed_source = seed_source
        self._on_message = on_message

        self._flags = OperationFlags()
        self._reward_handle: RewardHandle | None = None
        self._random_result_handle: str | None = None
        self._clear_reward: ClearValue | None = None
        self._clear_random_result: ClearValue | None = None
        self._message = ""
        self._messages: deque[str] = deque(maxlen=history_size)

    @classmethod
    def from_settings(
        cls,
        session: SessionContext,
        rpc: RpcClient,
        encryption: EncryptionService | None = None,
        settings: Settings | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> SpinOrchestrator:
        """Wire a JSON-RPC gateway, signature cache and deployment registry."""
        settings = settings or get_settings()
        if settings.deployments_file:
            deployments = DeploymentRegistry.from_file(settings.deployments_file)
        else:
            deployments = DeploymentRegistry()
        signatures = (
            SignatureCache.from_settings(encryption, settings) if encryption is not None else None
        )
        return cls(
            session,
            JsonRpcGateway.from_settings(rpc, settings),
            encryption,
            signatures=signatures,
            deployments=deployments,
            history_size=settings.message_history_size,
            on_message=on_message,
        )

    # ── Read-only state ──────────────────────────────────────────────

    @property
    def contract_address(self) -> str | None:
        deployment = self._deployments.resolve(self._session.chain_id)
        return deployment.address if deployment else None

    @property
    def reward_handle(self) -> RewardHandle | None:
        return self._reward_handle

    @property
    def random_result_handle(self) -> str | None:
        return self._random_result_handle

    @property
    def clear_reward(self) -> ClearValue | None:
        """Decrypted reward, only while it belongs to the current reward handle."""
        current = self._reward_handle.reward_handle if self._reward_handle else None
        if self._clear_reward is not None and self._clear_reward.matches(current):
            return self._clear_reward
        return None

    @property
    def clear_random_result(self) -> ClearValue | None:
        if self._clear_random_result is not None and self._clear_random_result.matches(
            self._random_result_handle
        ):
            return self._clear_random_result
        return None

    @property
    def message(self) -> str:
        return self._message

    @property
    def messages(self) -> list[str]:
        return list(self._messages)

    @property
    def is_refreshing(self) -> bool:
        return self._flags.refreshing

    @property
    def is_spinning(self) -> bool:
        return self._flags.spinning

    @property
    def is_decrypting(self) -> bool:
        return self._flags.decrypting

    def operation_state(self, family: OperationFamily) -> OperationState:
        return self._flags.state(family)

    # ── Capability predicates ────────────────────────────────────────

    @property
    def is_deployed(self) -> bool | None:
        """None while no network is selected."""
        if self._session.chain_id is None:
            return None
        return self._deployments.is_deployed(self._session.chain_id)

    @property
    def can_refresh(self) -> bool:
        return bool(self.contract_address and self._gateway is not None and not self.is_refreshing)

    @property
    def can_spin(self) -> bool:
        return bool(
            self.contract_address
            and self._encryption is not None
            and self._gateway is not None
            and self._session.signer is not None
            and not self._flags.any_set(REFRESH, SPIN)
        )

    def _can_decrypt_handle(self, handle: str | None, cached: ClearValue | None) -> bool:
        return bool(
            self.contract_address
            and self._encryption is not None
            and self._session.signer is not None
            and not self._flags.any_set(REFRESH, DECRYPT)
            and handle is not None
            and not is_zero_handle(handle)
            and not (cached is not None and cached.matches(handle))
        )

    @property
    def can_decrypt(self) -> bool:
        handle = self._reward_handle.reward_handle if self._reward_handle else None
        return self._can_decrypt_handle(handle, self._clear_reward)

    @property
    def can_decrypt_random(self) -> bool:
        return self._can_decrypt_handle(self._random_result_handle, self._clear_random_result)

    @property
    def is_decrypted(self) -> bool:
        return self.clear_reward is not None

    def state(self) -> SpinMachineState:
        """Snapshot of everything a caller may want to display."""
        return SpinMachineState(
            chain_id=self._session.chain_id,
            contract_address=self.contract_address,
            is_deployed=self.is_deployed,
            reward_handle=self._reward_handle,
            random_result_handle=self._random_result_handle,
            clear_reward=self.clear_reward,
            clear_random_result=self.clear_random_result,
            is_refreshing=self.is_refreshing,
            is_spinning=self.is_spinning,
            is_decrypting=self.is_decrypting,
            can_refresh=self.can_refresh,
            can_spin=self.can_spin,
            can_decrypt=self.can_decrypt,
            can_decrypt_random=self.can_decrypt_random,
            is_decrypted=self.is_decrypted,
            message=self._message,
        )

    # ── State writes ─────────────────────────────────────────────────

    def _report(
        self, message: str, level: int = logging.INFO, family: OperationFamily | None = None
    ) -> None:
        self._message = message
        self._messages.append(message)
        logger.log(level, message, extra={"operation": family.value if family else None})
        if self._on_message is not None:
            self._on_message(message)

    def _set_reward_handle(self, reward: RewardHandle | None) -> None:
        self._reward_handle = reward
        if self._clear_reward is not None and not self._clear_reward.matches(
            reward.reward_handle if reward else None
        ):
            self._clear_reward = None

    def _set_random_result_handle(self, handle: str | None) -> None:
        self._random_result_handle = normalize_handle(handle) if handle is not None else None
        if self._clear_random_result is not None and not self._clear_random_result.matches(
            self._random_result_handle
        ):
            self._clear_random_result = None

    def _store_clear_reward(self, value: ClearValue) -> bool:
        current = self._reward_handle.reward_handle if self._reward_handle else None
        if not value.matches(current):
            logger.info("Dropping clear reward for superseded handle %s", value.handle)
            return False
        self._clear_reward = value
        return True

    def _store_clear_random_result(self, value: ClearValue) -> bool:
        if not value.matches(self._random_result_handle):
            logger.info("Dropping clear random result for superseded handle %s", value.handle)
            return False
        self._clear_random_result = value
        return True

    def _invalidate_clear_values(self) -> None:
        self._clear_reward = None
        self._clear_random_result = None

    def _capture(self) -> SessionSnapshot:
        return capture(self._session, self._deployments)

    def _is_stale(self, snapshot: SessionSnapshot) -> bool:
        return is_stale(snapshot, self._session, self._deployments)

    # ── Session changes ──────────────────────────────────────────────

    async def session_changed(self) -> None:
        """Re-resolve the deployment after a network or account switch and refresh."""
        chain_id = self._session.chain_id
        if chain_id is not None and not self._deployments.is_deployed(chain_id):
            self._report(
                f"SpinMachine deployment not found for chainId={chain_id}.", logging.WARNING
            )
        await self.refresh()

    # ── Refresh ──────────────────────────────────────────────────────

    async def refresh(self) -> None:
        """Re-read the reward handles and, if available, the random-result handle."""
        if self._flags.refreshing:
            return

        snapshot = self._capture()
        if (
            snapshot.contract_address is None
            or snapshot.chain_id is None
            or self._gateway is None
        ):
            self._set_reward_handle(None)
            self._set_random_result_handle(None)
            return

        with self._flags.hold(REFRESH):
            try:
                reward = await self._gateway.get_user_reward(
                    snapshot.contract_address, snapshot.signer_identity
                )
            except Exception as exc:
                self._report(
                    f"SpinMachine.getUserReward() call failed! error={exc}", logging.ERROR, REFRESH
                )
                return

            if self._is_stale(snapshot):
                logger.info("Refresh result ignored: session changed", extra={"operation": "refresh"})
                return
            self._set_reward_handle(reward)

            random_result = await self._read_random_result(snapshot)
            if self._is_stale(snapshot):
                logger.info(
                    "Random result ignored: session changed", extra={"operation": "refresh"}
                )
                return
            self._set_random_result_handle(random_result)

    async def _read_random_result(self, snapshot: SessionSnapshot) -> str | None:
        """Optional read: a user who never spun has no random result."""
        try:
            return await self._gateway.get_user_random_result(
                snapshot.contract_address, snapshot.signer_identity
            )
        except Exception as exc:
            logger.debug(
                "getUserRandomResult() unavailable, treating as absent: %s",
                exc,
                extra={"operation": "refresh"},
            )
            return None

    # ── Spin ─────────────────────────────────────────────────────────

    async def spin(self) -> None:
        """Submit an encrypted random seed and refresh on confirmation."""
        if self._flags.any_set(REFRESH, SPIN):
            return

        snapshot = self._capture()
        if (
            snapshot.contract_address is None
            or snapshot.signer is None
            or self._encryption is None
            or self._gateway is None
        ):
            return

        with self._flags.hold(SPIN):
            self._report("Start spin...", family=SPIN)
            try:
                confirmed = await self._submit_spin(snapshot)
            except Exception as exc:
                self._report(f"Spin failed! {exc}", logging.ERROR, SPIN)
                return
            if not confirmed:
                return

            # A confirmed spin supersedes any previously decrypted values
            self._invalidate_clear_values()

            if self._is_stale(snapshot):
                self._report("Spin ignored: session changed before completion", family=SPIN)
                return
            await self.refresh()

    async def _submit_spin(self, snapshot: SessionSnapshot) -> bool:
        signer = snapshot.signer
        seed = self._seed_source()
        if not 0 <= seed < 2**SEED_BITS:
            raise SpinClientError(f"Seed {seed} is outside the 32-bit unsigned range")

        builder = self._encryption.create_encrypted_input(snapshot.contract_address, signer.address)
        builder.add32(seed)
        encrypted = await builder.encrypt()
        if not encrypted.handles:
            raise SpinClientError("Encrypted input contains no handle")

        if self._is_stale(snapshot):
            self._report("Spin ignored: session changed before submission", family=SPIN)
            return False

        self._report("Call spin...", family=SPIN)
        tx = await self._gateway.spin(
            snapshot.contract_address, signer, encrypted.handles[0], encrypted.input_proof
        )
        self._report(f"Wait for tx:{tx.hash}...", family=SPIN)
        receipt = await tx.wait()
        if not receipt.succeeded:
            raise TransactionFailedError(tx.hash, receipt.status)
        self._report(f"Spin completed status={receipt.status}", family=SPIN)
        return True

    # ── Decrypt ──────────────────────────────────────────────────────

    def _decrypt_preconditions(self) -> SessionSnapshot | None:
        if self._flags.any_set(REFRESH, DECRYPT):
            return None
        snapshot = self._capture()
        if snapshot.contract_address is None or snapshot.signer is None or self._encryption is None:
            return None
        return snapshot

    async def decrypt(self) -> None:
        """Decrypt the reward handle, and the random-result handle when present."""
        snapshot = self._decrypt_preconditions()
        if snapshot is None:
            return

        if self._reward_handle is None:
            self._clear_reward = None
            return
        reward_handle = self._reward_handle.reward_handle
        if is_zero_handle(reward_handle):
            self._clear_reward = ClearValue(handle=reward_handle, value=0)
            return
        if self._clear_reward is not None and self._clear_reward.matches(reward_handle):
            return

        random_handle = self._random_result_handle
        include_random = random_handle is not None and not is_zero_handle(random_handle)
        requests = [
            HandleContractPair(handle=reward_handle, contract_address=snapshot.contract_address)
        ]
        if include_random:
            requests.append(
                HandleContractPair(handle=random_handle, contract_address=snapshot.contract_address)
            )

        with self._flags.hold(DECRYPT):
            self._report("Start decrypt", family=DECRYPT)
            try:
                result = await self._user_decrypt(snapshot, requests)
                if result is None:
                    return
                reward_clear = ClearValue(
                    handle=reward_handle, value=result.require(reward_handle)
                )
                random_clear = None
                if include_random and random_handle in result:
                    random_clear = ClearValue(handle=random_handle, value=result[random_handle])
            except Exception as exc:
                self._report(f"Decryption failed: {exc}", logging.ERROR, DECRYPT)
                return

            if not self._store_clear_reward(reward_clear):
                self._report(HANDLE_CHANGED, family=DECRYPT)
                return
            reward_value = reward_clear.value
            if not include_random:
                self._report(f"Reward handle clear value is {reward_value}", family=DECRYPT)
                return

            if random_clear is None:
                self._clear_random_result = None
                self._report(
                    f"Reward: {reward_value}, Random result handle not found. "
                    f"Available handles: {', '.join(result.available())}",
                    logging.WARNING,
                    DECRYPT,
                )
            elif not self._store_clear_random_result(random_clear):
                self._report(
                    f"Reward handle clear value is {reward_value}. "
                    "Random result dropped: handle changed during decryption",
                    family=DECRYPT,
                )
            else:
                self._report(
                    f"Reward: {reward_value}, Random Result: {random_clear.value}", family=DECRYPT
                )

    async def decrypt_random_result(self) -> None:
        """Decrypt only the random-result handle."""
        snapshot = self._decrypt_preconditions()
        if snapshot is None:
            return

        random_handle = self._random_result_handle
        if random_handle is None:
            self._clear_random_result = None
            return
        if is_zero_handle(random_handle):
            self._clear_random_result = ClearValue(handle=random_handle, value=0)
            return
        if self._clear_random_result is not None and self._clear_random_result.matches(
            random_handle
        ):
            return

        requests = [
            HandleContractPair(handle=random_handle, contract_address=snapshot.contract_address)
        ]
        with self._flags.hold(DECRYPT):
            self._report("Start decrypt random result", family=DECRYPT)
            try:
                result = await self._user_decrypt(snapshot, requests)
                if result is None:
                    return
                if random_handle not in result:
                    self._report(
                        "Random result handle not found. "
                        f"Available handles: {', '.join(result.available())}",
                        logging.WARNING,
                        DECRYPT,
                    )
                    return
                random_clear = ClearValue(handle=random_handle, value=result[random_handle])
            except Exception as exc:
                self._report(f"Decryption failed: {exc}", logging.ERROR, DECRYPT)
                return

            if not self._store_clear_random_result(random_clear):
                self._report(HANDLE_CHANGED, family=DECRYPT)
                return
            self._report(f"Random result clear value is {random_clear.value}", family=DECRYPT)

    async def _user_decrypt(
        self, snapshot: SessionSnapshot, requests: list[HandleContractPair]
    ) -> DecryptionResult | None:
        """Authorize and run one user-decrypt batch.

        Returns None when no signature could be obtained or the session went
        stale at any resumption point; the caller then leaves the cache alone.
        """
        if self._is_stale(snapshot):
            self._report("Decryption ignored: session changed", family=DECRYPT)
            return None

        signer = snapshot.signer
        sig = await self._signatures.obtain(signer.address, [snapshot.contract_address], signer)
        if sig is None:
            self._report("Unable to build decryption signature", logging.WARNING, DECRYPT)
            return None
        if self._is_stale(snapshot):
            self._report("Decryption ignored: session changed", family=DECRYPT)
            return None

        self._report("Call userDecrypt...", family=DECRYPT)
        raw = await self._encryption.user_decrypt(
            requests,
            sig.private_key,
            sig.public_key,
            sig.signature,
            list(sig.contract_addresses),
            sig.user_address,
            sig.start_timestamp,
            sig.duration_days,
        )
        self._report("userDecrypt completed!", family=DECRYPT)

        if self._is_stale(snapshot):
            self._report("Decryption ignored: session changed", family=DECRYPT)
            return None
        return raw if isinstance(raw, DecryptionResult) else DecryptionResult(raw)
