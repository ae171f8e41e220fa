"""In-memory execution layer with Safe acceptance semantics.

Holds owners, threshold and nonce per account. ``execute`` re-checks the
proposal against current state and consumes the nonce in one step, so two
proposals racing for the same nonce resolve exactly like on chain: the first
one wins and the second reverts.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from typing import Iterable

from eth_utils import keccak, to_checksum_address

from multisig_coordinator.features.account.validity import evaluate
from multisig_coordinator.features.account.service import SAFE_ERROR_CODES
from multisig_coordinator.shared.errors import (
    BuildError,
    ExecutionReverted,
    ExecutionUnavailable,
)
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import (
    AccountState,
    ProposalRecord,
    ValidityReason,
    ValidityReport,
)
from multisig_coordinator.shared.validation import hash_to_bytes, normalize_address

logger = get_logger(__name__)


@dataclass
class _Account:
    owners: list[str]
    threshold: int
    nonce: int = 0
    executed: dict[str, str] = field(default_factory=dict)


class InMemoryLedger:
    def __init__(self, chain_id: int = 1, relay=None, verify_signatures: bool = True):
        self._chain_id = chain_id
        self._accounts: dict[str, _Account] = {}
        self._relay = relay
        self._verify_signatures = verify_signatures
        self._pending_failures = 0
        self._failing_targets: dict[str, str] = {}
        self.submissions: list[str] = []

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def attach_relay(self, relay) -> None:
        """Report executions to a relay, the way the hosted service indexes the chain."""
        self._relay = relay

    def create_account(
        self,
        owners: Iterable[str],
        threshold: int,
        nonce: int = 0,
        address: str | None = None,
    ) -> str:
        owner_list = [normalize_address(o) for o in owners]
        # Validates threshold bounds.
        AccountState(
            account="", signers=frozenset(owner_list), threshold=threshold, nonce=nonce
        )
        account = normalize_address(address) if address else to_checksum_address(
            "0x" + secrets.token_hex(20)
        )
        self._accounts[account.lower()] = _Account(
            owners=owner_list, threshold=threshold, nonce=nonce
        )
        return account

    def _get(self, account: str) -> _Account:
        try:
            return self._accounts[account.lower()]
        except KeyError:
            raise BuildError(f"{account} is not a known multisig account") from None

    def set_owners(self, account: str, owners: Iterable[str]) -> None:
        entry = self._get(account)
        owner_list = [normalize_address(o) for o in owners]
        AccountState(
            account=account,
            signers=frozenset(owner_list),
            threshold=entry.threshold,
            nonce=entry.nonce,
        )
        entry.owners = owner_list

    def set_threshold(self, account: str, threshold: int) -> None:
        entry = self._get(account)
        AccountState(
            account=account,
            signers=frozenset(entry.owners),
            threshold=threshold,
            nonce=entry.nonce,
        )
        entry.threshold = threshold

    def bump_nonce(self, account: str) -> None:
        """Consume the current nonce as if another transaction had executed."""
        self._get(account).nonce += 1

    def fail_next_execution(self, count: int = 1) -> None:
        self._pending_failures += count

    def fail_calls_to(self, target: str, reason: str = "GS013") -> None:
        self._failing_targets[target.lower()] = reason

    def _state(self, account: str) -> AccountState:
        entry = self._get(account)
        return AccountState(
            account=normalize_address(account),
            signers=frozenset(entry.owners),
            threshold=entry.threshold,
            nonce=entry.nonce,
        )

    async def current_state(self, account: str) -> AccountState:
        return self._state(account)

    async def check(self, record: ProposalRecord) -> ValidityReport:
        return evaluate(
            record, self._state(record.account), verify_signatures=self._verify_signatures
        )

    async def is_valid(self, record: ProposalRecord) -> bool:
        return (await self.check(record)).is_valid

    async def execute(self, record: ProposalRecord) -> str:
        # Let concurrently scheduled executions interleave before the atomic part.
        await asyncio.sleep(0)
        self.submissions.append(record.proposal_hash)

        if self._pending_failures > 0:
            self._pending_failures -= 1
            raise ExecutionUnavailable(
                "Execution layer unavailable", record.proposal_hash
            )

        report = evaluate(
            record, self._state(record.account), verify_signatures=self._verify_signatures
        )
        if report.reason == ValidityReason.THRESHOLD_NOT_MET:
            code = "GS020"
        elif not report.is_valid:
            # The contract hashes with its own nonce, so signatures over another
            # nonce recover to non-owners.
            code = "GS026"
        else:
            code = self._failing_targets.get(record.proposal.intent.target.lower())

        if code:
            reason = f"{code}: {SAFE_ERROR_CODES.get(code, 'reverted')}"
            logger.info("Execution of %s reverted: %s", record.proposal_hash, reason)
            raise ExecutionReverted(
                f"Execution reverted: {reason}", record.proposal_hash, reason=reason
            )

        entry = self._get(record.account)
        entry.nonce += 1
        receipt_id = "0x" + keccak(
            hash_to_bytes(record.proposal_hash) + entry.nonce.to_bytes(32, "big")
        ).hex()
        entry.executed[record.proposal_hash] = receipt_id
        logger.info(
            "Executed %s on %s at nonce %d", record.proposal_hash, record.account, record.nonce
        )

        if self._relay is not None:
            self._relay.record_outcome(record.proposal_hash, receipt_id=receipt_id)
        return receipt_id

    async def executed_receipt(self, record: ProposalRecord) -> str | None:
        return self._get(record.account).executed.get(record.proposal_hash)
