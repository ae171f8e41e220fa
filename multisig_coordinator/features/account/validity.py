"""On-chain acceptance rule for a proposal against current account state."""

from __future__ import annotations

from multisig_coordinator.features.signer.service import verify_endorsement
from multisig_coordinator.shared.models import (
    AccountState,
    ProposalRecord,
    ValidityReason,
    ValidityReport,
)


def counted_signers(
    record: ProposalRecord, state: AccountState, verify_signatures: bool = False
) -> list[str]:
    """Endorsing identities that count toward the threshold right now.

    Duplicates collapse to one, endorsements over another hash are ignored,
    and identities outside the current signer set do not count even if they
    were owners when they signed.
    """
    counted = []
    for signer in record.signers():
        endorsement = record.endorsement_for(signer)
        if endorsement is None or endorsement.proposal_hash != record.proposal_hash:
            continue
        if not state.is_signer(signer):
            continue
        if verify_signatures and not verify_endorsement(endorsement):
            continue
        counted.append(signer)
    return counted


def evaluate(
    record: ProposalRecord, state: AccountState, verify_signatures: bool = False
) -> ValidityReport:
    signers = counted_signers(record, state, verify_signatures)

    if record.nonce < state.nonce:
        reason = ValidityReason.STALE_NONCE
    elif len(signers) < state.threshold:
        reason = ValidityReason.THRESHOLD_NOT_MET
    elif record.nonce > state.nonce:
        reason = ValidityReason.NONCE_AHEAD
    else:
        reason = ValidityReason.OK

    return ValidityReport(
        reason=reason,
        approvals=len(signers),
        threshold=state.threshold,
        current_nonce=state.nonce,
        proposal_nonce=record.nonce,
        counted_signers=tuple(signers),
    )
