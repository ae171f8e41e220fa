"""Command line entry point for the multisig coordinator.

Usage::

    python -m multisig_coordinator status 0x<proposal-hash>
    python -m multisig_coordinator propose <safe> <target> "transfer(address,uint256)" 0x... 100
    python -m multisig_coordinator confirm 0x<proposal-hash>
    python -m multisig_coordinator execute 0x<proposal-hash>

Signer keys are read from environment variables, never from arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Sequence

from multisig_coordinator.features.account import SafeAccountView
from multisig_coordinator.features.builder import parse_signature
from multisig_coordinator.features.coordinator import (
    AuthorizationCoordinator,
    failure_result,
)
from multisig_coordinator.features.relay import (
    SafeTransactionServiceClient,
    service_url_for_chain,
)
from multisig_coordinator.features.signer import LocalKeySigner
from multisig_coordinator.shared.config import CoordinatorConfig
from multisig_coordinator.shared.errors import BuildError, CoordinatorError, StaleNonce
from multisig_coordinator.shared.logging import (
    format_error_for_user,
    get_logger,
    setup_logging,
)
from multisig_coordinator.shared.models import (
    AuthorizationResult,
    Operation,
    ProposalStatus,
)

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_STALE = 2

DEFAULT_SIGNER_KEY_ENV = "MULTISIG_SIGNER_PRIVATE_KEY"


def coerce_argument(abi_type: str, raw: str) -> Any:
    """Convert a command line string into a value eth_abi can encode."""
    if abi_type.endswith("]") or abi_type.startswith("("):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise BuildError(f"{abi_type} argument must be JSON: {raw!r}") from e
    if abi_type.startswith(("uint", "int")):
        try:
            return int(raw, 0)
        except ValueError as e:
            raise BuildError(f"{abi_type} argument must be an integer: {raw!r}") from e
    if abi_type == "bool":
        lowered = raw.lower()
        if lowered not in ("true", "false", "1", "0"):
            raise BuildError(f"bool argument must be true or false: {raw!r}")
        return lowered in ("true", "1")
    if abi_type.startswith("bytes"):
        hex_value = raw[2:] if raw.startswith("0x") else raw
        try:
            return bytes.fromhex(hex_value)
        except ValueError as e:
            raise BuildError(f"{abi_type} argument must be hex: {raw!r}") from e
    return raw


def coerce_arguments(method: str, raw_args: Sequence[str]) -> list[Any]:
    _, types = parse_signature(method)
    if len(types) != len(raw_args):
        raise BuildError(f"{method} expects {len(types)} arguments, got {len(raw_args)}")
    return [coerce_argument(t, a) for t, a in zip(types, raw_args)]


def build_coordinator(config: CoordinatorConfig) -> AuthorizationCoordinator:
    if not config.rpc_url:
        raise ValueError("MULTISIG_COORDINATOR_RPC_URL is not set")

    account_view = SafeAccountView.from_rpc(
        config.rpc_url,
        os.getenv(config.executor_key_env),
        timeout_config=config.timeout_config,
    )
    if account_view.chain_id != config.chain_id:
        raise ValueError(
            f"RPC reports chain id {account_view.chain_id}, configured {config.chain_id}"
        )
    relay = SafeTransactionServiceClient(
        config.relay_url or service_url_for_chain(config.chain_id),
        config.chain_id,
        timeout_config=config.timeout_config,
        retry_config=config.retry_config,
        api_key=config.relay_api_key,
    )
    return AuthorizationCoordinator(
        relay,
        account_view,
        retry_config=config.retry_config,
        signer_timeout=config.signer_timeout,
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multisig-coordinator",
        description="Propose, endorse and execute Safe multisig transactions",
    )
    parser.add_argument("--config", help="JSON configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Show the status of a proposal")
    status.add_argument("proposal_hash")

    pending = subparsers.add_parser("pending", help="List unexecuted proposals")
    pending.add_argument("account")

    propose = subparsers.add_parser("propose", help="Build, sign and propose a call")
    propose.add_argument("account")
    propose.add_argument("target")
    propose.add_argument("method", help='Function signature, e.g. "transfer(address,uint256)"')
    propose.add_argument("args", nargs="*")
    propose.add_argument("--value", type=int, default=0, help="Wei sent with the call")
    propose.add_argument("--nonce", type=int, help="Defaults to the account nonce")
    propose.add_argument("--delegate-call", action="store_true")

    confirm = subparsers.add_parser("confirm", help="Endorse a recorded proposal")
    confirm.add_argument("proposal_hash")

    execute = subparsers.add_parser("execute", help="Execute a proposal that met its threshold")
    execute.add_argument("proposal_hash")

    rebuild = subparsers.add_parser(
        "rebuild", help="Propose a stale proposal again at the current nonce"
    )
    rebuild.add_argument("proposal_hash")

    for sub in (propose, confirm, rebuild):
        sub.add_argument(
            "--signer-key-env",
            default=DEFAULT_SIGNER_KEY_ENV,
            help="Environment variable holding the signer private key",
        )
    return parser


async def run_command(
    coordinator: AuthorizationCoordinator, args: argparse.Namespace
) -> AuthorizationResult | list[AuthorizationResult]:
    if args.command == "status":
        return await coordinator.status(args.proposal_hash)
    if args.command == "pending":
        return await coordinator.pending(args.account)
    if args.command == "execute":
        return await coordinator.execute(args.proposal_hash)

    signer = LocalKeySigner.from_environment(args.signer_key_env)
    if args.command == "confirm":
        return await coordinator.endorse(args.proposal_hash, signer)
    if args.command == "rebuild":
        return await coordinator.rebuild(args.proposal_hash, signer)

    return await coordinator.propose(
        args.account,
        args.target,
        args.method,
        coerce_arguments(args.method, args.args),
        signer,
        value=args.value,
        nonce=args.nonce,
        operation=Operation.DELEGATE_CALL if args.delegate_call else Operation.CALL,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def main(argv: Sequence[str] | None = None) -> int:
    args = create_parser().parse_args(argv)
    setup_logging()

    try:
        config = (
            CoordinatorConfig.from_file(args.config)
            if args.config
            else CoordinatorConfig.from_environment()
        )
        coordinator = build_coordinator(config)
        result = asyncio.run(run_command(coordinator, args))
    except StaleNonce as e:
        logger.warning("Command %s: %s", args.command, e)
        _print_json(e.to_dict())
        print(format_error_for_user(e), file=sys.stderr)
        return EXIT_STALE
    except CoordinatorError as e:
        logger.error("Command %s failed: %s", args.command, e)
        failed = failure_result(e)
        _print_json(failed.to_dict() if failed else e.to_dict())
        print(format_error_for_user(e), file=sys.stderr)
        return EXIT_ERROR
    except (ValueError, OSError) as e:
        logger.error("Command %s failed: %s", args.command, e)
        print(format_error_for_user(e), file=sys.stderr)
        return EXIT_ERROR

    if isinstance(result, list):
        _print_json([r.to_dict() for r in result])
    else:
        _print_json(result.to_dict())
        if result.status == ProposalStatus.STALE:
            return EXIT_STALE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
