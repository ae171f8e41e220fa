"""Signer capabilities."""

from multisig_coordinator.features.signer.service import (
    DecliningSigner,
    LocalKeySigner,
    recover_signer,
    verify_endorsement,
)

__all__ = [
    "DecliningSigner",
    "LocalKeySigner",
    "recover_signer",
    "verify_endorsement",
]
