"""Feature modules for the multisig coordinator.

- builder: Call encoding and canonical proposal hashing
- relay: Proposal storage on the Safe Transaction Service or in memory
- signer: Signer capabilities and endorsement verification
- account: Multisig account state, validity rule and execution
- coordinator: The authorization state machine over the four above
"""

from multisig_coordinator.features import account
from multisig_coordinator.features import builder
from multisig_coordinator.features import coordinator
from multisig_coordinator.features import relay
from multisig_coordinator.features import signer

__all__ = ["account", "builder", "coordinator", "relay", "signer"]
