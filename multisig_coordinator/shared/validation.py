"""Input validation for addresses, hashes and signatures."""

from dataclasses import dataclass
from typing import Any

from eth_utils import is_address, is_checksum_address, to_checksum_address


@dataclass
class ValidationResult:
    is_valid: bool
    error_message: str | None = None
    normalized_value: Any = None


def _strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def _is_hex(value: str) -> bool:
    return all(c in "0123456789abcdef" for c in value.lower())


class AddressValidator:
    ADDRESS_HEX_LENGTH = 40

    @staticmethod
    def validate(value: str) -> ValidationResult:
        if not value or not value.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Address is required",
            )

        normalized = value.strip()
        hex_part = _strip_hex_prefix(normalized)

        if not normalized.lower().startswith("0x"):
            return ValidationResult(
                is_valid=False,
                error_message="Address must start with '0x'",
            )

        if len(hex_part) != AddressValidator.ADDRESS_HEX_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_message=f"Invalid address length. Expected {AddressValidator.ADDRESS_HEX_LENGTH} hex characters",
            )

        if not _is_hex(hex_part) or not is_address(normalized):
            return ValidationResult(
                is_valid=False,
                error_message="Address contains invalid characters",
            )

        # Mixed case means the caller supplied a checksum; it must be right.
        if hex_part != hex_part.lower() and hex_part != hex_part.upper():
            if not is_checksum_address(normalized):
                return ValidationResult(
                    is_valid=False,
                    error_message="Invalid address checksum",
                )

        return ValidationResult(
            is_valid=True,
            normalized_value=to_checksum_address(normalized),
        )


class HashValidator:
    HASH_HEX_LENGTH = 64

    @staticmethod
    def validate(value: str | bytes) -> ValidationResult:
        if isinstance(value, bytes):
            if len(value) != 32:
                return ValidationResult(
                    is_valid=False,
                    error_message="Hash must be exactly 32 bytes",
                )
            return ValidationResult(is_valid=True, normalized_value="0x" + value.hex())

        if not value or not value.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Hash is required",
            )

        hex_part = _strip_hex_prefix(value.strip()).lower()

        if len(hex_part) != HashValidator.HASH_HEX_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_message=f"Hash must be {HashValidator.HASH_HEX_LENGTH} hex characters",
            )

        if not _is_hex(hex_part):
            return ValidationResult(
                is_valid=False,
                error_message="Hash must be hexadecimal",
            )

        return ValidationResult(is_valid=True, normalized_value="0x" + hex_part)


class SignatureValidator:
    SIGNATURE_LENGTH = 65

    @staticmethod
    def validate(value: str | bytes) -> ValidationResult:
        if isinstance(value, str):
            hex_part = _strip_hex_prefix(value.strip())
            if not hex_part or not _is_hex(hex_part) or len(hex_part) % 2:
                return ValidationResult(
                    is_valid=False,
                    error_message="Signature must be hexadecimal",
                )
            value = bytes.fromhex(hex_part)

        if len(value) != SignatureValidator.SIGNATURE_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_message=f"Signature must be {SignatureValidator.SIGNATURE_LENGTH} bytes",
            )

        return ValidationResult(is_valid=True, normalized_value=value)


def normalize_address(value: str) -> str:
    result = AddressValidator.validate(value)
    if not result.is_valid:
        raise ValueError(f"Invalid address {value!r}: {result.error_message}")
    return result.normalized_value


def normalize_hash(value: str | bytes) -> str:
    result = HashValidator.validate(value)
    if not result.is_valid:
        raise ValueError(f"Invalid hash: {result.error_message}")
    return result.normalized_value


def hash_to_bytes(value: str) -> bytes:
    return bytes.fromhex(_strip_hex_prefix(normalize_hash(value)))
