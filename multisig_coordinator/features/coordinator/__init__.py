"""Authorization coordinator."""

from multisig_coordinator.features.coordinator.service import (
    AuthorizationCoordinator,
    failure_result,
    status_for_error,
)

__all__ = ["AuthorizationCoordinator", "failure_result", "status_for_error"]
