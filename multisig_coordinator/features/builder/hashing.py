"""Safe transaction hashing (EIP-712 ``safeTxHash``).

Only the fields the coordinator controls vary; gas refund parameters are
always zero so the executor pays gas and nobody is refunded.
"""

from __future__ import annotations

from eth_abi import encode
from eth_utils import keccak

from multisig_coordinator.shared.models import TransactionIntent

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
SAFE_TX_GAS = 0
BASE_GAS = 0
GAS_PRICE = 0
GAS_TOKEN = ZERO_ADDRESS
REFUND_RECEIVER = ZERO_ADDRESS

DOMAIN_SEPARATOR_TYPEHASH = keccak(
    text="EIP712Domain(uint256 chainId,address verifyingContract)"
)
SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,"
        "uint256 safeTxGas,uint256 baseGas,uint256 gasPrice,address gasToken,"
        "address refundReceiver,uint256 nonce)"
    )
)


def domain_separator(chain_id: int, account: str) -> bytes:
    return keccak(
        encode(
            ["bytes32", "uint256", "address"],
            [DOMAIN_SEPARATOR_TYPEHASH, chain_id, account],
        )
    )


def safe_tx_struct_hash(intent: TransactionIntent, nonce: int) -> bytes:
    return keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                intent.target,
                intent.value,
                keccak(intent.data),
                int(intent.operation),
                SAFE_TX_GAS,
                BASE_GAS,
                GAS_PRICE,
                GAS_TOKEN,
                REFUND_RECEIVER,
                nonce,
            ],
        )
    )


def compute_proposal_hash(
    intent: TransactionIntent, account: str, nonce: int, chain_id: int
) -> bytes:
    """Return the 32-byte hash every owner signs for this proposal."""
    return keccak(
        b"\x19\x01"
        + domain_separator(chain_id, account)
        + safe_tx_struct_hash(intent, nonce)
    )
