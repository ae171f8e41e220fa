"""Records exchanged between the coordinator and its capabilities.

Hashes travel as ``0x``-prefixed lowercase hex strings, the form the relay
service uses, and signer identities as checksummed addresses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any


class Operation(IntEnum):
    CALL = 0
    DELEGATE_CALL = 1


@dataclass(frozen=True)
class TransactionIntent:
    target: str
    method: str
    data: bytes
    value: int = 0
    operation: Operation = Operation.CALL

    @property
    def data_hex(self) -> str:
        return "0x" + self.data.hex()

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.target,
            "method": self.method,
            "data": self.data_hex,
            "value": str(self.value),
            "operation": int(self.operation),
        }


@dataclass(frozen=True)
class TransactionProposal:
    intent: TransactionIntent
    account: str
    nonce: int
    chain_id: int
    canonical_hash: str

    def content_key(self) -> tuple[Any, ...]:
        """Fields the relay stores; the method label is not part of it."""
        return (
            self.canonical_hash,
            self.account.lower(),
            self.nonce,
            self.intent.target.lower(),
            self.intent.value,
            self.intent.data,
            int(self.intent.operation),
        )

    def matches(self, other: "TransactionProposal") -> bool:
        return self.content_key() == other.content_key()


@dataclass(frozen=True)
class Endorsement:
    proposal_hash: str
    signer: str
    signature: bytes

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()


@dataclass(frozen=True)
class AccountState:
    account: str
    signers: frozenset[str]
    threshold: int
    nonce: int

    def __post_init__(self):
        if self.threshold < 1:
            raise ValueError("threshold must be at least 1")
        if self.threshold > len(self.signers):
            raise ValueError(
                f"threshold {self.threshold} exceeds signer count {len(self.signers)}"
            )
        if self.nonce < 0:
            raise ValueError("nonce cannot be negative")

    def is_signer(self, identity: str) -> bool:
        return identity.lower() in {s.lower() for s in self.signers}


class RecordStatus(Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProposalRecord:
    proposal: TransactionProposal
    endorsements: tuple[Endorsement, ...] = ()
    status: RecordStatus = RecordStatus.PENDING
    receipt_id: str | None = None
    failure_reason: str | None = None

    @property
    def proposal_hash(self) -> str:
        return self.proposal.canonical_hash

    @property
    def account(self) -> str:
        return self.proposal.account

    @property
    def nonce(self) -> int:
        return self.proposal.nonce

    @property
    def is_executed(self) -> bool:
        return self.status == RecordStatus.EXECUTED

    def signers(self) -> list[str]:
        seen: set[str] = set()
        ordered = []
        for endorsement in self.endorsements:
            key = endorsement.signer.lower()
            if key not in seen:
                seen.add(key)
                ordered.append(endorsement.signer)
        return ordered

    def endorsement_for(self, identity: str) -> Endorsement | None:
        for endorsement in self.endorsements:
            if endorsement.signer.lower() == identity.lower():
                return endorsement
        return None

    def has_endorsement(self, identity: str) -> bool:
        return self.endorsement_for(identity) is not None

    def with_endorsement(self, endorsement: Endorsement) -> "ProposalRecord":
        if self.has_endorsement(endorsement.signer):
            return self
        return replace(self, endorsements=self.endorsements + (endorsement,))


class ValidityReason(Enum):
    OK = "ok"
    STALE_NONCE = "stale_nonce"
    NONCE_AHEAD = "nonce_ahead"
    THRESHOLD_NOT_MET = "threshold_not_met"


@dataclass(frozen=True)
class ValidityReport:
    reason: ValidityReason
    approvals: int
    threshold: int
    current_nonce: int
    proposal_nonce: int
    counted_signers: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.reason == ValidityReason.OK

    @property
    def missing(self) -> int:
        return max(0, self.threshold - self.approvals)


class ProposalStatus(Enum):
    BUILT = "built"
    PROPOSED = "proposed"
    AWAITING_THRESHOLD = "awaiting_threshold"
    READY_TO_EXECUTE = "ready_to_execute"
    EXECUTED = "executed"
    REJECTED = "rejected"
    FAILED = "failed"
    STALE = "stale"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProposalStatus.EXECUTED,
            ProposalStatus.REJECTED,
            ProposalStatus.FAILED,
        )


@dataclass(frozen=True)
class AuthorizationResult:
    proposal_hash: str
    status: ProposalStatus
    record: ProposalRecord | None = None
    approvals: int = 0
    threshold: int = 0
    receipt_id: str | None = None
    error_kind: str | None = None
    detail: str = ""
    signers: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "proposal_hash": self.proposal_hash,
            "status": self.status.value,
            "approvals": self.approvals,
            "threshold": self.threshold,
            "signers": list(self.signers),
        }
        if self.record is not None:
            data["account"] = self.record.account
            data["nonce"] = self.record.nonce
            data["intent"] = self.record.proposal.intent.to_dict()
        if self.receipt_id:
            data["receipt_id"] = self.receipt_id
        if self.error_kind:
            data["error_kind"] = self.error_kind
        if self.detail:
            data["detail"] = self.detail
        return data
