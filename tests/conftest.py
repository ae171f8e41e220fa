import asyncio

import pytest

from multisig_coordinator.features.account.memory import InMemoryLedger
from multisig_coordinator.features.builder.service import TransactionBuilder
from multisig_coordinator.features.coordinator.service import AuthorizationCoordinator
from multisig_coordinator.features.relay.memory import InMemoryRelay
from multisig_coordinator.features.signer.service import LocalKeySigner
from multisig_coordinator.shared.models import Endorsement, ProposalRecord
from multisig_coordinator.shared.network import RetryConfig
from multisig_coordinator.shared.validation import hash_to_bytes

TOKEN_ADDRESS = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
RECIPIENT_ADDRESS = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SAFE_ADDRESS = "0x5afe3855358e112b5647b952709e6165e1c1eeee"


def make_signer(seed: int) -> LocalKeySigner:
    return LocalKeySigner.from_key(bytes([seed]) * 32)


@pytest.fixture
def owners():
    """Fixture providing three owner signers with fixed keys"""
    return [make_signer(1), make_signer(2), make_signer(3)]


@pytest.fixture
def outsider():
    """Fixture providing a signer that is not an owner"""
    return make_signer(9)


@pytest.fixture
def ledger():
    return InMemoryLedger(chain_id=1)


@pytest.fixture
def relay(ledger):
    relay = InMemoryRelay(account_view=ledger)
    ledger.attach_relay(relay)
    return relay


@pytest.fixture
def safe(ledger, owners):
    """Fixture providing a 2-of-3 account at nonce 5"""
    return ledger.create_account(
        [o.identity for o in owners], threshold=2, nonce=5, address=SAFE_ADDRESS
    )


@pytest.fixture
def retry_config():
    return RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def coordinator(relay, ledger, retry_config):
    return AuthorizationCoordinator(
        relay, ledger, retry_config=retry_config, signer_timeout=1.0
    )


def endorsed_record(account, nonce, signers, amount=100, chain_id=1):
    """Build a pending transfer proposal at ``nonce`` endorsed by ``signers``."""
    builder = TransactionBuilder(chain_id)
    intent = builder.build(
        TOKEN_ADDRESS, "transfer(address,uint256)", [RECIPIENT_ADDRESS, amount]
    )
    proposal = builder.prepare(intent, account, nonce)
    record = ProposalRecord(proposal=proposal)
    for signer in signers:
        signature = asyncio.run(signer.sign(hash_to_bytes(proposal.canonical_hash)))
        record = record.with_endorsement(
            Endorsement(
                proposal_hash=proposal.canonical_hash,
                signer=signer.identity,
                signature=signature,
            )
        )
    return record
