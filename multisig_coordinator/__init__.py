"""Multisig Coordinator - multi-party authorization of Safe transactions.

This package is organized into feature-based modules:
- features.builder: Transaction intents and canonical hashes
- features.relay: Proposal relay clients
- features.signer: Signer capabilities
- features.account: Multisig account views
- features.coordinator: The authorization coordinator
- shared: Shared utilities (config, errors, logging, network, validation)
"""

from multisig_coordinator.features.account import InMemoryLedger, SafeAccountView
from multisig_coordinator.features.builder import TransactionBuilder
from multisig_coordinator.features.coordinator import AuthorizationCoordinator
from multisig_coordinator.features.relay import (
    InMemoryRelay,
    SafeTransactionServiceClient,
)
from multisig_coordinator.features.signer import DecliningSigner, LocalKeySigner
from multisig_coordinator.shared import (
    CoordinatorConfig,
    CoordinatorError,
    ErrorKind,
    StaleNonce,
)
from multisig_coordinator.shared.models import (
    AuthorizationResult,
    ProposalStatus,
    TransactionIntent,
    TransactionProposal,
)

__version__ = "0.1.0"
__all__ = [
    "AuthorizationCoordinator",
    "AuthorizationResult",
    "CoordinatorConfig",
    "CoordinatorError",
    "DecliningSigner",
    "ErrorKind",
    "InMemoryLedger",
    "InMemoryRelay",
    "LocalKeySigner",
    "ProposalStatus",
    "SafeAccountView",
    "SafeTransactionServiceClient",
    "StaleNonce",
    "TransactionBuilder",
    "TransactionIntent",
    "TransactionProposal",
]
