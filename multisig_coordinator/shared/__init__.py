"""Shared utilities for the multisig coordinator."""

from multisig_coordinator.shared.config import CoordinatorConfig
from multisig_coordinator.shared.errors import (
    BuildError,
    CoordinatorError,
    EndorsementRejected,
    ErrorKind,
    ExecutionReverted,
    ExecutionUnavailable,
    ProposalConflict,
    ProposalNotFound,
    RelayRejected,
    RelayUnavailable,
    SignatureDeclined,
    SignerUnavailable,
    StaleNonce,
)
from multisig_coordinator.shared.logging import (
    ContextAdapter,
    LoggingConfig,
    LogLevel,
    format_error_for_user,
    get_logger,
    get_user_friendly_error,
    sanitize_dict,
    sanitize_message,
    setup_logging,
)
from multisig_coordinator.shared.network import (
    NetworkClient,
    NetworkError,
    NetworkErrorType,
    RetryConfig,
    TimeoutConfig,
)
from multisig_coordinator.shared.validation import (
    AddressValidator,
    HashValidator,
    SignatureValidator,
    ValidationResult,
)

__all__ = [
    "CoordinatorConfig",
    "BuildError",
    "CoordinatorError",
    "EndorsementRejected",
    "ErrorKind",
    "ExecutionReverted",
    "ExecutionUnavailable",
    "ProposalConflict",
    "ProposalNotFound",
    "RelayUnavailable",
    "RelayRejected",
    "SignatureDeclined",
    "SignerUnavailable",
    "StaleNonce",
    "NetworkClient",
    "NetworkError",
    "NetworkErrorType",
    "RetryConfig",
    "TimeoutConfig",
    "AddressValidator",
    "HashValidator",
    "SignatureValidator",
    "ValidationResult",
    "ContextAdapter",
    "LoggingConfig",
    "LogLevel",
    "format_error_for_user",
    "get_logger",
    "get_user_friendly_error",
    "sanitize_dict",
    "sanitize_message",
    "setup_logging",
]
