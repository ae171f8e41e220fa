"""Transaction building and canonical hashing."""

from multisig_coordinator.features.builder.hashing import compute_proposal_hash
from multisig_coordinator.features.builder.service import (
    TransactionBuilder,
    canonical_signature,
    method_selector,
    parse_signature,
    signature_from_abi,
)

__all__ = [
    "TransactionBuilder",
    "canonical_signature",
    "compute_proposal_hash",
    "method_selector",
    "parse_signature",
    "signature_from_abi",
]
