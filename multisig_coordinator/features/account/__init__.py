"""Multisig account views over the execution layer."""

from multisig_coordinator.features.account.memory import InMemoryLedger
from multisig_coordinator.features.account.service import (
    SAFE_ABI,
    SAFE_ERROR_CODES,
    SafeAccountView,
    describe_revert,
    pack_signatures,
)
from multisig_coordinator.features.account.validity import counted_signers, evaluate

__all__ = [
    "InMemoryLedger",
    "SAFE_ABI",
    "SAFE_ERROR_CODES",
    "SafeAccountView",
    "counted_signers",
    "describe_revert",
    "evaluate",
    "pack_signatures",
]
