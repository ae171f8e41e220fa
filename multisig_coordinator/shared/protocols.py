"""Capability interfaces composed by the authorization coordinator."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from multisig_coordinator.shared.models import (
    AccountState,
    Endorsement,
    ProposalRecord,
    TransactionProposal,
    ValidityReport,
)


@runtime_checkable
class Signer(Protocol):
    @property
    def identity(self) -> str: ...

    async def sign(self, proposal_hash: bytes) -> bytes: ...


@runtime_checkable
class RelayClient(Protocol):
    async def propose(
        self, proposal: TransactionProposal, first_endorsement: Endorsement
    ) -> str: ...

    async def fetch(self, proposal_hash: str) -> ProposalRecord: ...

    async def confirm(self, proposal_hash: str, endorsement: Endorsement) -> None: ...

    async def list_pending(self, account: str) -> list[ProposalRecord]: ...


@runtime_checkable
class AccountView(Protocol):
    @property
    def chain_id(self) -> int: ...

    async def current_state(self, account: str) -> AccountState: ...

    async def check(self, record: ProposalRecord) -> ValidityReport: ...

    async def is_valid(self, record: ProposalRecord) -> bool: ...

    async def execute(self, record: ProposalRecord) -> str: ...

    async def executed_receipt(self, record: ProposalRecord) -> str | None: ...
