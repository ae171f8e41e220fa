"""Relay clients that store proposals awaiting endorsements."""

from multisig_coordinator.features.relay.memory import InMemoryRelay
from multisig_coordinator.features.relay.service import (
    SERVICE_URLS,
    SafeTransactionServiceClient,
    service_url_for_chain,
)

__all__ = [
    "InMemoryRelay",
    "SERVICE_URLS",
    "SafeTransactionServiceClient",
    "service_url_for_chain",
]
