"""In-memory relay with the same acceptance rules as the hosted service."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from multisig_coordinator.features.signer.service import verify_endorsement
from multisig_coordinator.shared.errors import (
    EndorsementRejected,
    ProposalConflict,
    ProposalNotFound,
    RelayUnavailable,
)
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import (
    Endorsement,
    ProposalRecord,
    RecordStatus,
    TransactionProposal,
)
from multisig_coordinator.shared.protocols import AccountView
from multisig_coordinator.shared.validation import normalize_hash

logger = get_logger(__name__)


class InMemoryRelay:
    """Stores unexecuted proposals and their endorsements keyed by hash.

    When an account view is attached, endorsements are only accepted from
    current owners and only when the signature recovers to the claimed owner,
    as the hosted transaction service enforces.
    """

    def __init__(self, account_view: AccountView | None = None):
        self._records: dict[str, ProposalRecord] = {}
        self._account_view = account_view
        self._pending_failures = 0
        self.calls: list[str] = []

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` calls fail as if the service were unreachable."""
        self._pending_failures += count

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(operation)
        if self._pending_failures > 0:
            self._pending_failures -= 1
            raise RelayUnavailable(f"{operation}: relay service unavailable")

    async def _check_endorser(self, record: ProposalRecord, endorsement: Endorsement) -> None:
        if endorsement.proposal_hash != record.proposal_hash:
            raise ProposalConflict(
                f"Endorsement is for {endorsement.proposal_hash}, not {record.proposal_hash}",
                record.proposal_hash,
            )
        if self._account_view is None:
            return
        state = await self._account_view.current_state(record.account)
        if not state.is_signer(endorsement.signer):
            raise EndorsementRejected(
                f"{endorsement.signer} is not an owner of {record.account}",
                record.proposal_hash,
            )
        if not verify_endorsement(endorsement):
            raise EndorsementRejected(
                f"Signature does not match signer {endorsement.signer}",
                record.proposal_hash,
            )

    def _append(self, record: ProposalRecord, endorsement: Endorsement) -> ProposalRecord:
        existing = record.endorsement_for(endorsement.signer)
        if existing is not None:
            if existing.signature != endorsement.signature:
                raise ProposalConflict(
                    f"{endorsement.signer} already endorsed {record.proposal_hash} "
                    "with a different signature",
                    record.proposal_hash,
                )
            return record
        updated = record.with_endorsement(endorsement)
        self._records[record.proposal_hash] = updated
        return updated

    async def propose(
        self, proposal: TransactionProposal, first_endorsement: Endorsement
    ) -> str:
        await self._enter("propose")
        proposal_hash = proposal.canonical_hash
        existing = self._records.get(proposal_hash)

        if existing is not None:
            if not existing.proposal.matches(proposal):
                raise ProposalConflict(
                    f"A different proposal is already stored under {proposal_hash}",
                    proposal_hash,
                )
            await self._check_endorser(existing, first_endorsement)
            self._append(existing, first_endorsement)
            logger.debug("Proposal %s already recorded", proposal_hash)
            return proposal_hash

        record = ProposalRecord(proposal=proposal)
        await self._check_endorser(record, first_endorsement)
        self._records[proposal_hash] = record.with_endorsement(first_endorsement)
        logger.info("Recorded proposal %s for %s", proposal_hash, proposal.account)
        return proposal_hash

    async def fetch(self, proposal_hash: str) -> ProposalRecord:
        await self._enter("fetch")
        try:
            return self._records[normalize_hash(proposal_hash)]
        except KeyError:
            raise ProposalNotFound(
                f"No proposal recorded under {proposal_hash}", proposal_hash
            ) from None

    async def confirm(self, proposal_hash: str, endorsement: Endorsement) -> None:
        await self._enter("confirm")
        key = normalize_hash(proposal_hash)
        record = self._records.get(key)
        if record is None:
            raise ProposalNotFound(f"No proposal recorded under {proposal_hash}", key)
        if record.status != RecordStatus.PENDING:
            raise EndorsementRejected(
                f"Proposal {key} is already {record.status.value}", key
            )
        await self._check_endorser(record, endorsement)
        self._append(record, endorsement)

    async def list_pending(self, account: str) -> list[ProposalRecord]:
        await self._enter("list_pending")
        pending = [
            r
            for r in self._records.values()
            if r.account.lower() == account.lower() and r.status == RecordStatus.PENDING
        ]
        return sorted(pending, key=lambda r: r.nonce)

    def record_outcome(
        self,
        proposal_hash: str,
        receipt_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        key = normalize_hash(proposal_hash)
        record = self._records.get(key)
        if record is None:
            logger.debug("Ignoring outcome for unknown proposal %s", key)
            return
        if reason is not None:
            self._records[key] = replace(
                record, status=RecordStatus.FAILED, failure_reason=reason
            )
        else:
            self._records[key] = replace(
                record, status=RecordStatus.EXECUTED, receipt_id=receipt_id
            )
