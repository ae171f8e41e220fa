"""Transaction builder: contract call intent to canonical Safe proposal.

Turns a target address, a function signature and its arguments into an
immutable ``TransactionIntent`` and, given an account and nonce, into a
``TransactionProposal`` carrying the hash every owner signs. Building is pure
and deterministic; identical inputs always yield identical call data and
identical hashes.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

from eth_abi import encode
from eth_abi.exceptions import ABITypeError, EncodingError, ParseError
from eth_utils import keccak

from multisig_coordinator.features.builder.hashing import compute_proposal_hash
from multisig_coordinator.shared.errors import BuildError
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import (
    Operation,
    TransactionIntent,
    TransactionProposal,
)
from multisig_coordinator.shared.validation import AddressValidator

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_TYPE_ALIASES = {"uint": "uint256", "int": "int256", "byte": "bytes1"}


def _split_top_level(params: str) -> list[str]:
    parts = []
    depth = 0
    current = ""
    for char in params:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise BuildError(f"Unbalanced parentheses in parameter list: {params}")
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += char
    if depth != 0:
        raise BuildError(f"Unbalanced parentheses in parameter list: {params}")
    parts.append(current)
    return parts


def _canonical_type(abi_type: str) -> str:
    if abi_type.startswith("("):
        close = abi_type.rindex(")")
        inner = ",".join(
            _canonical_type(t) for t in _split_top_level(abi_type[1:close]) if t
        )
        return f"({inner}){abi_type[close + 1 :]}"
    base, bracket, suffix = abi_type.partition("[")
    return _TYPE_ALIASES.get(base, base) + bracket + suffix


def parse_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type,...)`` into the name and canonical parameter types."""
    compact = "".join(signature.split())
    if "(" not in compact or not compact.endswith(")"):
        raise BuildError(f"Malformed method signature: {signature!r}")

    name, _, rest = compact.partition("(")
    if not _IDENTIFIER.match(name):
        raise BuildError(f"Invalid method name in signature: {signature!r}")

    params = rest[:-1]
    if not params:
        return name, []

    types = _split_top_level(params)
    if any(not t for t in types):
        raise BuildError(f"Empty parameter type in signature: {signature!r}")
    return name, [_canonical_type(t) for t in types]


def canonical_signature(signature: str) -> str:
    name, types = parse_signature(signature)
    return f"{name}({','.join(types)})"


def method_selector(signature: str) -> bytes:
    return keccak(text=canonical_signature(signature))[:4]


def _abi_input_type(abi_input: dict[str, Any]) -> str:
    abi_type = abi_input["type"]
    if abi_type.startswith("tuple"):
        components = ",".join(_abi_input_type(c) for c in abi_input["components"])
        return f"({components}){abi_type[len('tuple') :]}"
    return abi_type


def signature_from_abi(abi: Sequence[dict[str, Any]], function_name: str) -> str:
    """Resolve a function signature from a compiled contract ABI."""
    matches = [
        entry
        for entry in abi
        if entry.get("type", "function") == "function"
        and entry.get("name") == function_name
    ]
    if not matches:
        raise BuildError(f"Function {function_name!r} not found in ABI")
    if len(matches) > 1:
        raise BuildError(
            f"Function {function_name!r} is overloaded in ABI; pass an explicit signature"
        )
    inputs = ",".join(_abi_input_type(i) for i in matches[0].get("inputs", []))
    return f"{function_name}({inputs})"


class TransactionBuilder:
    """Builds call intents and canonical proposals for one chain."""

    def __init__(self, chain_id: int):
        if chain_id <= 0:
            raise ValueError("chain_id must be positive")
        self.chain_id = chain_id

    @staticmethod
    def _validate_address(address: str, label: str) -> str:
        result = AddressValidator.validate(address)
        if not result.is_valid:
            raise BuildError(f"Invalid {label} address {address!r}: {result.error_message}")
        return result.normalized_value

    def build(
        self,
        target: str,
        method: str,
        args: Sequence[Any] = (),
        value: int = 0,
        operation: Operation | int = Operation.CALL,
    ) -> TransactionIntent:
        """Encode a contract call.

        Args:
            target: Address of the contract being called
            method: Function signature, e.g. ``setFxChildTunnel(address)``
            args: Positional arguments matching the signature
            value: Native currency amount in wei sent with the call
            operation: CALL or DELEGATE_CALL

        Raises:
            BuildError: If any input is malformed or the arguments cannot be encoded
        """
        target_address = self._validate_address(target, "target")

        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise BuildError(f"Value must be a non-negative integer, got {value!r}")

        try:
            operation = Operation(operation)
        except ValueError as e:
            raise BuildError(f"Unknown operation: {operation!r}") from e

        name, types = parse_signature(method)
        signature = f"{name}({','.join(types)})"
        if len(args) != len(types):
            raise BuildError(
                f"{signature} expects {len(types)} arguments, got {len(args)}"
            )

        try:
            encoded_args = encode(types, list(args))
        except (EncodingError, ParseError, ABITypeError, TypeError, ValueError) as e:
            raise BuildError(f"Cannot encode arguments for {signature}: {e}") from e

        data = method_selector(signature) + encoded_args
        logger.debug("Built intent %s on %s (%d bytes)", signature, target_address, len(data))
        return TransactionIntent(
            target=target_address,
            method=signature,
            data=data,
            value=value,
            operation=operation,
        )

    def build_from_abi(
        self,
        target: str,
        abi: Sequence[dict[str, Any]],
        function_name: str,
        args: Sequence[Any] = (),
        value: int = 0,
        operation: Operation | int = Operation.CALL,
    ) -> TransactionIntent:
        signature = signature_from_abi(abi, function_name)
        return self.build(target, signature, args, value=value, operation=operation)

    def prepare(
        self, intent: TransactionIntent, account: str, nonce: int
    ) -> TransactionProposal:
        """Bind an intent to an account and nonce and compute its canonical hash."""
        account_address = self._validate_address(account, "account")
        if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
            raise BuildError(f"Nonce must be a non-negative integer, got {nonce!r}")

        proposal_hash = compute_proposal_hash(
            intent, account_address, nonce, self.chain_id
        )
        return TransactionProposal(
            intent=intent,
            account=account_address,
            nonce=nonce,
            chain_id=self.chain_id,
            canonical_hash="0x" + proposal_hash.hex(),
        )
