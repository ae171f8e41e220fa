"""Error taxonomy shared by the coordinator and its capability adapters.

Every error raised across a capability boundary is a ``CoordinatorError``
tagged with an ``ErrorKind`` so callers can decide between retrying,
rebuilding a fresh proposal, or abandoning without parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    BUILD_ERROR = "build_error"
    RELAY_UNAVAILABLE = "relay_unavailable"
    RELAY_REJECTED = "relay_rejected"
    PROPOSAL_CONFLICT = "proposal_conflict"
    PROPOSAL_NOT_FOUND = "proposal_not_found"
    SIGNATURE_DECLINED = "signature_declined"
    SIGNER_UNAVAILABLE = "signer_unavailable"
    ENDORSEMENT_REJECTED = "endorsement_rejected"
    STALE_NONCE = "stale_nonce"
    EXECUTION_UNAVAILABLE = "execution_unavailable"
    EXECUTION_REVERTED = "execution_reverted"


class CoordinatorError(Exception):
    kind: ErrorKind = ErrorKind.BUILD_ERROR
    retryable: bool = False

    def __init__(self, message: str, proposal_hash: str | None = None):
        super().__init__(message)
        self.message = message
        self.proposal_hash = proposal_hash

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "proposal_hash": self.proposal_hash,
            "retryable": self.retryable,
        }


class BuildError(CoordinatorError):
    """The intent is malformed: bad address, bad signature or bad arguments."""

    kind = ErrorKind.BUILD_ERROR


class RelayUnavailable(CoordinatorError):
    """The relay could not be reached after the transport exhausted retries."""

    kind = ErrorKind.RELAY_UNAVAILABLE
    retryable = True


class RelayRejected(CoordinatorError):
    """The relay answered with a well-formed refusal that fits no other kind."""

    kind = ErrorKind.RELAY_REJECTED

    def __init__(
        self,
        message: str,
        proposal_hash: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, proposal_hash)
        self.status_code = status_code


class ProposalConflict(CoordinatorError):
    """The relay holds a differently-shaped record under the same hash."""

    kind = ErrorKind.PROPOSAL_CONFLICT


class ProposalNotFound(CoordinatorError):
    kind = ErrorKind.PROPOSAL_NOT_FOUND


class SignatureDeclined(CoordinatorError):
    """A signer refused to sign or returned a signature that does not verify."""

    kind = ErrorKind.SIGNATURE_DECLINED


class SignerUnavailable(CoordinatorError):
    """A signer did not answer in time."""

    kind = ErrorKind.SIGNER_UNAVAILABLE
    retryable = True


class EndorsementRejected(CoordinatorError):
    """An endorsement was refused, e.g. because the signer is not an owner.

    The proposal itself is unaffected and may still collect other endorsements.
    """

    kind = ErrorKind.ENDORSEMENT_REJECTED


class StaleNonce(CoordinatorError):
    """The proposal nonce has been consumed; rebuild and collect signatures again."""

    kind = ErrorKind.STALE_NONCE

    def __init__(
        self,
        message: str,
        proposal_hash: str | None = None,
        proposal_nonce: int | None = None,
        current_nonce: int | None = None,
    ):
        super().__init__(message, proposal_hash)
        self.proposal_nonce = proposal_nonce
        self.current_nonce = current_nonce


class ExecutionUnavailable(CoordinatorError):
    kind = ErrorKind.EXECUTION_UNAVAILABLE
    retryable = True


class ExecutionReverted(CoordinatorError):
    kind = ErrorKind.EXECUTION_REVERTED

    def __init__(
        self,
        message: str,
        proposal_hash: str | None = None,
        reason: str = "",
    ):
        super().__init__(message, proposal_hash)
        self.reason = reason


__all__ = [
    "ErrorKind",
    "CoordinatorError",
    "BuildError",
    "RelayUnavailable",
    "RelayRejected",
    "ProposalConflict",
    "ProposalNotFound",
    "SignatureDeclined",
    "SignerUnavailable",
    "EndorsementRejected",
    "StaleNonce",
    "ExecutionUnavailable",
    "ExecutionReverted",
]
