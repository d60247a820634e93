"""Re-entry latches and staleness detection for orchestrator operations.

Operations run on a single event loop, so mutual exclusion needs no locks:
a family's flag is checked and set synchronously before the operation's
first ``await``, and reset in a ``finally`` block. Cancellation is implicit:
every resumption point compares the identity captured at the start with the
current one and discards its own result when they differ.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from spinclient.chain.session import SessionContext
from spinclient.chain.signer import Signer, signer_identity
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.types import OperationFamily, OperationState


@dataclass(frozen=True)
class SessionSnapshot:
    """Identity of the session an operation started in. Never mutated."""

    contract_address: str | None
    chain_id: int | None
    signer: Signer | None = field(default=None, compare=False, repr=False)

    @property
    def signer_identity(self) -> str | None:
        return signer_identity(self.signer)


def _resolve_address(session: SessionContext, deployments: DeploymentRegistry) -> str | None:
    deployment = deployments.resolve(session.chain_id)
    return deployment.address if deployment else None


def capture(session: SessionContext, deployments: DeploymentRegistry) -> SessionSnapshot:
    """Capture contract address, network id and signer at operation start."""
    return SessionSnapshot(
        contract_address=_resolve_address(session, deployments),
        chain_id=session.chain_id,
        signer=session.signer,
    )


def is_stale(
    captured: SessionSnapshot, session: SessionContext, deployments: DeploymentRegistry
) -> bool:
    """True if contract, network or signer changed since ``captured``."""
    return (
        not session.same_chain(captured.chain_id)
        or not session.same_signer(captured.signer)
        or _resolve_address(session, deployments) != captured.contract_address
    )


class AlreadyInFlight(Exception):
    """Raised by ``OperationFlags.hold`` when the family is already running."""


@dataclass
class OperationFlags:
    """One boolean latch per operation family."""

    _active: dict[OperationFamily, bool] = field(
        default_factory=lambda: {family: False for family in OperationFamily}
    )

    @property
    def refreshing(self) -> bool:
        return self._active[OperationFamily.REFRESH]

    @property
    def spinning(self) -> bool:
        return self._active[OperationFamily.SPIN]

    @property
    def decrypting(self) -> bool:
        return self._active[OperationFamily.DECRYPT]

    def any_set(self, *families: OperationFamily) -> bool:
        return any(self._active[f] for f in families)

    def state(self, family: OperationFamily) -> OperationState:
        return OperationState.IN_FLIGHT if self._active[family] else OperationState.IDLE

    @contextmanager
    def hold(self, family: OperationFamily) -> Iterator[None]:
        """Mark ``family`` in flight for the duration of the block."""
        if self._active[family]:
            raise AlreadyInFlight(family.value)
        self._active[family] = True
        try:
            yield
        finally:
            self._active[family] = False
