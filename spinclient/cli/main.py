"""spinclient CLI: inspect a user's SpinMachine session from the terminal.

Usage:
    spinclient status --user <addr>     Read the user's reward and random-result handles
    spinclient deployments              List known SpinMachine deployments
    spinclient config                   Show current configuration

Examples:
    spinclient status --user 0xf39f...2266 --rpc-url http://localhost:8545
    spinclient status --user 0xf39f...2266 --chain-id 11155111 --format json
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from spinclient.chain.rpc import RpcClient
from spinclient.chain.session import Session
from spinclient.chain.signer import JsonRpcSigner
from spinclient.core.config import get_settings
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.logging import OperationLogFilter, setup_logging
from spinclient.core.types import SpinMachineState
from spinclient.orchestrator.spin import SpinOrchestrator

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_GREEN = "\033[92m"
_DIM = "\033[2m"


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spinclient",
        description="SpinMachine confidential lottery client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    # ── status ───────────────────────────────────────────────────────────────
    status_p = sub.add_parser("status", help="Read the user's current handles")
    status_p.add_argument("--user", "-u", required=True, help="User account address")
    status_p.add_argument("--rpc-url", help="JSON-RPC endpoint (default: SPIN_RPC_URL)")
    status_p.add_argument("--chain-id", type=int, help="Chain id (default: ask the node)")
    status_p.add_argument(
        "--format",
        "-f",
        default="table",
        choices=["table", "json"],
        help="Output format (default: table)",
    )

    # ── deployments ──────────────────────────────────────────────────────────
    sub.add_parser("deployments", help="List known SpinMachine deployments")

    # ── config ───────────────────────────────────────────────────────────────
    sub.add_parser("config", help="Show current configuration")

    return parser


def _load_registry() -> DeploymentRegistry:
    settings = get_settings()
    if settings.deployments_file:
        return DeploymentRegistry.from_file(settings.deployments_file)
    return DeploymentRegistry()


# ── Status command ───────────────────────────────────────────────────────────


def _print_state(state: SpinMachineState) -> None:
    print(f"\n{_BOLD}SpinMachine{_RESET} on chain {state.chain_id}")
    if not state.is_deployed:
        print(_c(f"  Not deployed on chain {state.chain_id}", _RED))
        return
    print(f"  {_DIM}contract:{_RESET}       {state.contract_address}")
    if state.reward_handle is None:
        print(f"  {_DIM}reward:{_RESET}         (unavailable)")
    else:
        print(f"  {_DIM}level handle:{_RESET}   {state.reward_handle.level_handle}")
        print(f"  {_DIM}reward handle:{_RESET}  {state.reward_handle.reward_handle}")
    print(f"  {_DIM}random result:{_RESET}  {state.random_result_handle or '(none yet)'}")
    if state.message:
        print(f"\n  {state.message}")
    print()


async def _run_status(args: argparse.Namespace, handler: logging.Handler) -> int:
    settings = get_settings()
    rpc = RpcClient(
        args.rpc_url or settings.rpc_url,
        timeout=settings.rpc_timeout_seconds,
        max_retries=settings.rpc_max_retries,
    )
    async with rpc:
        chain_id = args.chain_id
        if chain_id is None:
            chain_id = int(await rpc.request("eth_chainId"), 16)

        session = Session(chain_id=chain_id, signer=JsonRpcSigner(rpc, args.user))
        orchestrator = SpinOrchestrator.from_settings(session, rpc, settings=settings)
        handler.addFilter(OperationLogFilter(chain_id, orchestrator.contract_address or ""))
        await orchestrator.session_changed()
        state = orchestrator.state()

    if args.format == "json":
        print(state.model_dump_json(indent=2))
    else:
        _print_state(state)
    return 0 if state.reward_handle is not None else 1


# ── Deployments command ──────────────────────────────────────────────────────


def _run_deployments() -> int:
    registry = _load_registry()
    print(f"\n{_BOLD}SpinMachine deployments{_RESET}\n")
    for chain_id in registry.chain_ids():
        info = registry.resolve(chain_id)
        if info is None:
            print(f"  {chain_id:>10}  {_c('not deployed', _RED)}")
        else:
            print(f"  {chain_id:>10}  {_c(info.address, _GREEN)}  {_DIM}{info.chain_name}{_RESET}")
    print()
    return 0


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings (redacted)."""
    s = get_settings()
    print(f"\n{_BOLD}spinclient configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        if "redis_url" in field_name and val:
            val = "****"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print("spinclient 0.1.0")
        return 0

    settings = get_settings()
    handler = setup_logging(settings.app_env, "DEBUG" if args.verbose else settings.log_level)

    if args.command == "config":
        return _run_config()

    if args.command == "deployments":
        return _run_deployments()

    if args.command == "status":
        return asyncio.run(_run_status(args, handler))

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
