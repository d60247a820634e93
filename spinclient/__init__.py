"""spinclient: client-side orchestration for the confidential SpinMachine lottery."""

from spinclient.chain.gateway import JsonRpcGateway
from spinclient.chain.rpc import RpcClient
from spinclient.chain.session import Session
from spinclient.chain.signer import JsonRpcSigner
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.types import ZERO_HANDLE, ClearValue, RewardHandle, SpinMachineState
from spinclient.fhe.signature import SignatureCache
from spinclient.orchestrator.spin import SpinOrchestrator

__version__ = "0.1.0"

__all__ = [
    "ClearValue",
    "DeploymentRegistry",
    "JsonRpcGateway",
    "JsonRpcSigner",
    "RewardHandle",
    "RpcClient",
    "Session",
    "SignatureCache",
    "SpinMachineState",
    "SpinOrchestrator",
    "ZERO_HANDLE",
]
