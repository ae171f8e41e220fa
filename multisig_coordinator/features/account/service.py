"""Safe multisig account view backed by a JSON-RPC node.

Reads owners, threshold and nonce straight from the Safe contract each time
they are needed and submits ``execTransaction`` from an executor key that
pays gas. web3 calls block, so they run in a worker thread and the event loop
stays free.

A signed execTransaction is remembered until its receipt is known. When the
response is lost after broadcast, the next attempt sends the same signed
transaction again and waits for it instead of signing a new one.
"""

from __future__ import annotations

import asyncio
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from requests.exceptions import ConnectionError, Timeout
from web3 import Web3
from eth_utils import keccak
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)

from multisig_coordinator.features.account.validity import evaluate
from multisig_coordinator.features.builder.hashing import (
    BASE_GAS,
    GAS_PRICE,
    GAS_TOKEN,
    REFUND_RECEIVER,
    SAFE_TX_GAS,
)
from multisig_coordinator.shared.errors import (
    BuildError,
    ExecutionReverted,
    ExecutionUnavailable,
)
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import (
    AccountState,
    ProposalRecord,
    ValidityReport,
)
from multisig_coordinator.shared.network import TimeoutConfig
from multisig_coordinator.shared.validation import hash_to_bytes

logger = get_logger(__name__)

SAFE_ERROR_CODES = {
    "GS000": "Could not finish initialization",
    "GS001": "Threshold needs to be defined",
    "GS010": "Not enough gas to execute Safe transaction",
    "GS011": "Could not pay gas costs with ether",
    "GS012": "Could not pay gas costs with token",
    "GS013": "Safe transaction failed when gasPrice and safeTxGas were 0",
    "GS020": "Signatures data too short",
    "GS021": "Invalid contract signature location: inside static part",
    "GS022": "Invalid contract signature location: length not present",
    "GS023": "Invalid contract signature location: data not complete",
    "GS024": "Invalid contract signature provided",
    "GS025": "Hash has not been approved",
    "GS026": "Invalid owner provided",
}

SAFE_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "getOwners",
        "outputs": [{"internalType": "address[]", "name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getThreshold",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
            {"internalType": "bytes", "name": "data", "type": "bytes"},
            {"internalType": "uint8", "name": "operation", "type": "uint8"},
            {"internalType": "uint256", "name": "safeTxGas", "type": "uint256"},
            {"internalType": "uint256", "name": "baseGas", "type": "uint256"},
            {"internalType": "uint256", "name": "gasPrice", "type": "uint256"},
            {"internalType": "address", "name": "gasToken", "type": "address"},
            {"internalType": "address", "name": "refundReceiver", "type": "address"},
            {"internalType": "bytes", "name": "signatures", "type": "bytes"},
        ],
        "name": "execTransaction",
        "outputs": [{"internalType": "bool", "name": "success", "type": "bool"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

TRANSIENT_ERRORS = (ConnectionError, Timeout, TimeExhausted)

# Node answers for a raw transaction it has already seen or mined.
ALREADY_BROADCAST = ("already known", "known transaction", "nonce too low")

EXECUTION_SUCCESS_TOPIC = "0x" + keccak(text="ExecutionSuccess(bytes32,uint256)").hex()


def describe_revert(message: str) -> str:
    """Expand a ``GSxxx`` revert code into its description when present."""
    for code, description in SAFE_ERROR_CODES.items():
        if code in message:
            return f"{code}: {description}"
    return message


def pack_signatures(record: ProposalRecord, owners: list[str]) -> bytes:
    """Concatenate owner signatures sorted ascending by owner address.

    The Safe contract walks signatures in strictly increasing owner order, so
    non-owners and duplicates are left out.
    """
    owner_set = {o.lower() for o in owners}
    endorsements = [
        record.endorsement_for(signer)
        for signer in record.signers()
        if signer.lower() in owner_set
    ]
    ordered = sorted(
        (e for e in endorsements if e is not None), key=lambda e: int(e.signer, 16)
    )
    return b"".join(e.signature for e in ordered)


class SafeAccountView:
    def __init__(
        self,
        web3: Web3,
        executor: LocalAccount | None,
        chain_id: int,
        gas_limit: int | None = None,
        receipt_timeout: float = 120.0,
        event_lookback_blocks: int = 10_000,
    ):
        self.web3 = web3
        self.executor = executor
        self._chain_id = chain_id
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.event_lookback_blocks = event_lookback_blocks
        # proposal hash -> (tx hash, signed raw transaction) awaiting a receipt
        self._in_flight: dict[str, tuple[Any, bytes]] = {}

    @classmethod
    def from_rpc(
        cls,
        rpc_url: str,
        executor_key: str | None,
        timeout_config: TimeoutConfig | None = None,
        **kwargs: Any,
    ) -> "SafeAccountView":
        timeout = (timeout_config or TimeoutConfig()).read_timeout
        web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        chain_id = web3.eth.chain_id
        logger.info("Connected to RPC %s (chain id %d)", rpc_url, chain_id)
        executor = Account.from_key(executor_key) if executor_key else None
        return cls(web3, executor, chain_id, **kwargs)

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def _contract(self, account: str):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(account), abi=SAFE_ABI
        )

    def _read_state(self, account: str) -> AccountState:
        contract = self._contract(account)
        try:
            owners = contract.functions.getOwners().call()
            threshold = contract.functions.getThreshold().call()
            nonce = contract.functions.nonce().call()
        except TRANSIENT_ERRORS as e:
            raise ExecutionUnavailable(f"Cannot read Safe state for {account}: {e}") from e
        except (BadFunctionCallOutput, ContractLogicError) as e:
            raise BuildError(f"{account} is not a Safe multisig account: {e}") from e

        return AccountState(
            account=Web3.to_checksum_address(account),
            signers=frozenset(Web3.to_checksum_address(o) for o in owners),
            threshold=int(threshold),
            nonce=int(nonce),
        )

    async def current_state(self, account: str) -> AccountState:
        return await asyncio.to_thread(self._read_state, account)

    async def check(self, record: ProposalRecord) -> ValidityReport:
        state = await self.current_state(record.account)
        return evaluate(record, state)

    async def is_valid(self, record: ProposalRecord) -> bool:
        return (await self.check(record)).is_valid

    def _broadcast(self, record: ProposalRecord):
        state = self._read_state(record.account)
        intent = record.proposal.intent
        signatures = pack_signatures(record, sorted(state.signers))

        function = self._contract(record.account).functions.execTransaction(
            intent.target,
            intent.value,
            intent.data,
            int(intent.operation),
            SAFE_TX_GAS,
            BASE_GAS,
            GAS_PRICE,
            GAS_TOKEN,
            REFUND_RECEIVER,
            signatures,
        )

        tx_params: dict[str, Any] = {
            "from": self.executor.address,
            "nonce": self.web3.eth.get_transaction_count(self.executor.address, "pending"),
            "chainId": self._chain_id,
        }
        if self.gas_limit:
            tx_params["gas"] = self.gas_limit

        tx = function.build_transaction(tx_params)
        signed = self.executor.sign_transaction(tx)
        self._in_flight[record.proposal_hash] = (signed.hash, signed.raw_transaction)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        self._in_flight[record.proposal_hash] = (tx_hash, signed.raw_transaction)
        logger.info(
            "Submitted execTransaction for %s as %s",
            record.proposal_hash,
            tx_hash.to_0x_hex(),
        )
        return tx_hash

    def _rebroadcast(self, record: ProposalRecord):
        tx_hash, raw_transaction = self._in_flight[record.proposal_hash]
        try:
            self.web3.eth.send_raw_transaction(raw_transaction)
        except Web3RPCError as e:
            if not any(m in str(e).lower() for m in ALREADY_BROADCAST):
                raise
        logger.info(
            "Waiting again for execTransaction %s of %s",
            tx_hash.to_0x_hex(),
            record.proposal_hash,
        )
        return tx_hash

    def _submit(self, record: ProposalRecord) -> str:
        if self.executor is None:
            raise BuildError("No executor key configured; cannot submit execTransaction")

        try:
            if record.proposal_hash in self._in_flight:
                tx_hash = self._rebroadcast(record)
            else:
                tx_hash = self._broadcast(record)
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except ContractLogicError as e:
            self._in_flight.pop(record.proposal_hash, None)
            reason = describe_revert(str(e.message or e))
            raise ExecutionReverted(
                f"Execution reverted: {reason}", record.proposal_hash, reason=reason
            ) from e
        except Web3RPCError as e:
            self._in_flight.pop(record.proposal_hash, None)
            reason = describe_revert(str(e))
            raise ExecutionReverted(
                f"Execution rejected by node: {reason}", record.proposal_hash, reason=reason
            ) from e

        self._in_flight.pop(record.proposal_hash, None)
        if receipt["status"] != 1:
            raise ExecutionReverted(
                f"Execution transaction {tx_hash.to_0x_hex()} reverted",
                record.proposal_hash,
                reason="receipt status 0",
            )
        return tx_hash.to_0x_hex()

    async def execute(self, record: ProposalRecord) -> str:
        try:
            return await asyncio.to_thread(self._submit, record)
        except TRANSIENT_ERRORS as e:
            raise ExecutionUnavailable(
                f"Execution layer unavailable: {e}", record.proposal_hash
            ) from e

    def _find_execution(self, record: ProposalRecord) -> str | None:
        in_flight = self._in_flight.get(record.proposal_hash)
        if in_flight is not None:
            try:
                receipt = self.web3.eth.get_transaction_receipt(in_flight[0])
            except TransactionNotFound:
                receipt = None
            if receipt is not None and receipt["status"] == 1:
                self._in_flight.pop(record.proposal_hash, None)
                return in_flight[0].to_0x_hex()

        latest = self.web3.eth.block_number
        logs = self.web3.eth.get_logs(
            {
                "address": Web3.to_checksum_address(record.account),
                "fromBlock": max(0, latest - self.event_lookback_blocks),
                "toBlock": latest,
                "topics": [EXECUTION_SUCCESS_TOPIC],
            }
        )
        target = hash_to_bytes(record.proposal_hash)
        for entry in logs:
            topics = entry["topics"]
            # txHash is indexed from Safe 1.4 on and sits in the data before that.
            if len(topics) > 1:
                executed_hash = bytes(topics[1])
            else:
                executed_hash = bytes(entry["data"])[:32]
            if executed_hash == target:
                return entry["transactionHash"].to_0x_hex()
        return None

    async def executed_receipt(self, record: ProposalRecord) -> str | None:
        """Hash of the transaction that executed ``record``, if it landed on chain."""
        try:
            return await asyncio.to_thread(self._find_execution, record)
        except TRANSIENT_ERRORS as e:
            raise ExecutionUnavailable(
                f"Cannot look up execution of {record.proposal_hash}: {e}",
                record.proposal_hash,
            ) from e
