"""SpinMachine deployment registry keyed by chain id."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from spinclient.core.types import ZERO_ADDRESS, normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentInfo:
    """A SpinMachine contract deployed on one chain."""

    chain_id: int
    address: str
    chain_name: str = ""


# ── Built-in registry ────────────────────────────────────────────────────────

DEPLOYMENTS: dict[int, DeploymentInfo] = {
    31337: DeploymentInfo(
        chain_id=31337,
        address="0x5fbdb2315678afecb367f032d93f642f64180aa3",
        chain_name="Hardhat Local",
    ),
    11155111: DeploymentInfo(
        chain_id=11155111,
        address="0x82bdc155511fdd8d08ed4ab0575c6b7dde408376",
        chain_name="Sepolia Testnet",
    ),
}


class DeploymentRegistry:
    """Resolves the SpinMachine contract address for a chain id."""

    def __init__(self, deployments: dict[int, DeploymentInfo] | None = None) -> None:
        self._deployments = dict(DEPLOYMENTS if deployments is None else deployments)

    @classmethod
    def from_file(cls, path: str | Path) -> DeploymentRegistry:
        """Load the generated address file.

        The file maps chain ids (as strings) to
        ``{"address": ..., "chainId": ..., "chainName": ...}``. Entries with a
        malformed address are skipped with a warning.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        deployments: dict[int, DeploymentInfo] = {}
        for key, entry in raw.items():
            try:
                chain_id = int(entry.get("chainId", key))
                address = normalize_address(entry["address"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping deployment entry %s: %s", key, exc)
                continue
            deployments[chain_id] = DeploymentInfo(
                chain_id=chain_id,
                address=address,
                chain_name=entry.get("chainName", ""),
            )
        return cls(deployments)

    def resolve(self, chain_id: int | None) -> DeploymentInfo | None:
        """Return the deployment for ``chain_id``, or None if there is none.

        A registry entry pointing at the zero address counts as not deployed.
        """
        if chain_id is None:
            return None
        info = self._deployments.get(chain_id)
        if info is None or normalize_address(info.address) == ZERO_ADDRESS:
            return None
        return info

    def is_deployed(self, chain_id: int | None) -> bool:
        return self.resolve(chain_id) is not None

    def chain_ids(self) -> list[int]:
        return sorted(self._deployments)
