"""Session context: the user's current network and signer."""

from __future__ import annotations

import logging
from typing import Protocol

from spinclient.chain.signer import Signer, signer_identity

logger = logging.getLogger(__name__)


class SessionContext(Protocol):
    """Current network id and signer, with change predicates."""

    @property
    def chain_id(self) -> int | None: ...

    @property
    def signer(self) -> Signer | None: ...

    def same_chain(self, chain_id: int | None) -> bool: ...

    def same_signer(self, signer: Signer | None) -> bool: ...


class Session:
    """Mutable in-process session.

    Wallet integrations call ``switch_chain`` / ``switch_signer`` when the
    user changes network or account; in-flight orchestrator operations notice
    through the predicates at their next resumption point.
    """

    def __init__(self, chain_id: int | None = None, signer: Signer | None = None) -> None:
        self._chain_id = chain_id
        self._signer = signer

    @property
    def chain_id(self) -> int | None:
        return self._chain_id

    @property
    def signer(self) -> Signer | None:
        return self._signer

    def switch_chain(self, chain_id: int | None) -> None:
        if chain_id != self._chain_id:
            logger.info("Network changed: %s -> %s", self._chain_id, chain_id)
        self._chain_id = chain_id

    def switch_signer(self, signer: Signer | None) -> None:
        if signer_identity(signer) != signer_identity(self._signer):
            logger.info(
                "Signer changed: %s -> %s", signer_identity(self._signer), signer_identity(signer)
            )
        self._signer = signer

    def same_chain(self, chain_id: int | None) -> bool:
        return chain_id == self._chain_id

    def same_signer(self, signer: Signer | None) -> bool:
        return signer_identity(signer) == signer_identity(self._signer)
