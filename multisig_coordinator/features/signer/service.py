"""Signer capabilities and endorsement verification.

A signer produces an owner signature over a proposal hash and nothing else;
the coordinator never sees key material. Verification recovers the signing
address from the signature so a signer returning garbage, or signing with a
different key than it claims, is caught before anything reaches the relay.
"""

from __future__ import annotations

import os

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak

from multisig_coordinator.shared.errors import SignatureDeclined
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import Endorsement
from multisig_coordinator.shared.validation import SignatureValidator, hash_to_bytes

logger = get_logger(__name__)

ETH_SIGN_PREFIX = b"\x19Ethereum Signed Message:\n32"


class LocalKeySigner:
    """Signs proposal hashes with a private key held in process memory."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str | bytes) -> "LocalKeySigner":
        try:
            return cls(Account.from_key(private_key))
        except (ValueError, TypeError) as e:
            raise ValueError("Invalid private key") from e

    @classmethod
    def from_environment(cls, variable: str) -> "LocalKeySigner":
        private_key = os.getenv(variable)
        if not private_key:
            raise ValueError(f"Environment variable {variable} is not set")
        return cls.from_key(private_key)

    @classmethod
    def random(cls) -> "LocalKeySigner":
        return cls(Account.create())

    @property
    def identity(self) -> str:
        return self._account.address

    async def sign(self, proposal_hash: bytes) -> bytes:
        if len(proposal_hash) != 32:
            raise SignatureDeclined(
                f"Refusing to sign {len(proposal_hash)}-byte payload; expected a 32-byte hash"
            )
        signed = self._account.unsafe_sign_hash(proposal_hash)
        return bytes(signed.signature)

    def __repr__(self) -> str:
        return f"LocalKeySigner({self.identity})"


class DecliningSigner:
    """A signer whose holder refuses every request."""

    def __init__(self, identity: str, reason: str = "declined by key holder"):
        self._identity = identity
        self.reason = reason

    @property
    def identity(self) -> str:
        return self._identity

    async def sign(self, proposal_hash: bytes) -> bytes:
        raise SignatureDeclined(f"Signer {self._identity} {self.reason}")


def recover_signer(proposal_hash: bytes, signature: bytes) -> str:
    """Recover the owner address from a Safe ECDSA owner signature.

    ``v`` of 27/28 signs the raw hash; 31/32 is the ``eth_sign`` variant where
    the hash was wrapped in the personal-message prefix first.

    Raises:
        ValueError: If the signature is malformed or cannot be recovered
    """
    result = SignatureValidator.validate(signature)
    if not result.is_valid:
        raise ValueError(result.error_message)

    v = signature[64]
    message_hash = proposal_hash
    if v > 30:
        v -= 4
        message_hash = keccak(ETH_SIGN_PREFIX + proposal_hash)
    if v >= 27:
        v -= 27
    if v not in (0, 1):
        raise ValueError(f"Unsupported signature recovery id: {signature[64]}")

    try:
        recovered = keys.Signature(signature[:64] + bytes([v]))
        public_key = recovered.recover_public_key_from_msg_hash(message_hash)
    except (BadSignature, ValidationError) as e:
        raise ValueError(f"Cannot recover signer: {e}") from e
    return public_key.to_checksum_address()


def verify_endorsement(endorsement: Endorsement) -> bool:
    try:
        recovered = recover_signer(
            hash_to_bytes(endorsement.proposal_hash), endorsement.signature
        )
    except ValueError as e:
        logger.warning(
            "Endorsement from %s does not verify: %s", endorsement.signer, e
        )
        return False
    return recovered.lower() == endorsement.signer.lower()
