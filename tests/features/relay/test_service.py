"""Tests for the Safe Transaction Service relay client."""

import asyncio
from unittest.mock import Mock, patch

import pytest
from requests.exceptions import ConnectionError

from multisig_coordinator.features.relay.service import (
    SafeTransactionServiceClient,
    service_url_for_chain,
)
from multisig_coordinator.shared.errors import (
    EndorsementRejected,
    ProposalConflict,
    ProposalNotFound,
    RelayRejected,
    RelayUnavailable,
)
from multisig_coordinator.shared.models import Operation, RecordStatus
from multisig_coordinator.shared.network import (
    NetworkError,
    NetworkErrorType,
    RetryConfig,
)
from tests.conftest import SAFE_ADDRESS, endorsed_record, make_signer

RELAY_URL = "https://safe-transaction-sepolia.safe.global"


@pytest.fixture
def signers():
    return [make_signer(1), make_signer(2), make_signer(3)]


@pytest.fixture
def client():
    return SafeTransactionServiceClient(RELAY_URL, chain_id=1)


@pytest.fixture
def network(client):
    network = Mock()
    client._network_client = network
    return network


def http_error(status_code, text="", retryable=False):
    return NetworkError(
        error_type=NetworkErrorType.HTTP_ERROR,
        message=f"HTTP error {status_code}: {text}",
        status_code=status_code,
        response_text=text,
        retryable=retryable,
    )


def record_json(record, executed=False, successful=None, transaction_hash=None):
    intent = record.proposal.intent
    return {
        "safe": record.account,
        "to": intent.target,
        "value": str(intent.value),
        "data": intent.data_hex,
        "operation": int(intent.operation),
        "nonce": record.nonce,
        "safeTxHash": record.proposal_hash,
        "dataDecoded": {"method": "transfer", "parameters": []},
        "isExecuted": executed,
        "isSuccessful": successful,
        "transactionHash": transaction_hash,
        "confirmations": [
            {
                "owner": e.signer,
                "signature": e.signature_hex,
                "submissionDate": f"2026-01-0{i + 1}T00:00:00Z",
            }
            for i, e in reversed(list(enumerate(record.endorsements)))
        ],
    }


class TestServiceUrls:
    def test_known_chain(self):
        assert service_url_for_chain(11155111) == RELAY_URL

    def test_unknown_chain(self):
        with pytest.raises(ValueError, match="relay_url"):
            service_url_for_chain(999999)

    def test_for_chain(self):
        client = SafeTransactionServiceClient.for_chain(1)
        assert client._network_client.base_url == "https://safe-transaction-mainnet.safe.global"

    def test_api_key_header(self):
        client = SafeTransactionServiceClient(RELAY_URL, 1, api_key="token")
        assert client._network_client.headers == {"Authorization": "Bearer token"}


class TestFetch:
    def test_parses_record(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.get_optional.return_value = record_json(record)

        fetched = asyncio.run(client.fetch("0x" + record.proposal_hash[2:].upper()))

        assert fetched.proposal_hash == record.proposal_hash
        assert fetched.nonce == 5
        assert fetched.proposal.intent.data == record.proposal.intent.data
        assert fetched.proposal.intent.operation == Operation.CALL
        assert fetched.proposal.intent.method == "transfer"
        assert fetched.signers() == [signers[0].identity, signers[1].identity]
        assert fetched.status == RecordStatus.PENDING
        endpoint = network.get_optional.call_args[0][0]
        assert endpoint == f"/api/v1/multisig-transactions/{record.proposal_hash}/"

    def test_executed_record(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.get_optional.return_value = record_json(
            record, executed=True, successful=True, transaction_hash="0x" + "cd" * 32
        )

        fetched = asyncio.run(client.fetch(record.proposal_hash))

        assert fetched.status == RecordStatus.EXECUTED
        assert fetched.receipt_id == "0x" + "cd" * 32

    def test_failed_record(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.get_optional.return_value = record_json(
            record, executed=True, successful=False
        )
        assert asyncio.run(client.fetch(record.proposal_hash)).status == RecordStatus.FAILED

    def test_not_found(self, client, network):
        network.get_optional.return_value = None
        with pytest.raises(ProposalNotFound):
            asyncio.run(client.fetch("0x" + "00" * 32))

    def test_unavailable(self, client, network):
        network.get_optional.side_effect = NetworkError(
            error_type=NetworkErrorType.TIMEOUT, message="timeout", retryable=True
        )
        with pytest.raises(RelayUnavailable):
            asyncio.run(client.fetch("0x" + "00" * 32))


class TestPropose:
    def test_posts_payload(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.post.return_value = {"message": ""}

        proposal_hash = asyncio.run(
            client.propose(record.proposal, record.endorsements[0])
        )

        assert proposal_hash == record.proposal_hash
        endpoint = network.post.call_args[0][0]
        payload = network.post.call_args[1]["json"]
        assert endpoint == f"/api/v1/safes/{record.account}/multisig-transactions/"
        assert payload["contractTransactionHash"] == record.proposal_hash
        assert payload["sender"] == signers[0].identity
        assert payload["signature"] == record.endorsements[0].signature_hex
        assert payload["nonce"] == 5
        assert payload["safeTxGas"] == "0"

    def test_already_recorded_identical(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.post.side_effect = http_error(422, "Transaction already exists")
        network.get_optional.return_value = record_json(record)

        proposal_hash = asyncio.run(
            client.propose(record.proposal, record.endorsements[0])
        )

        assert proposal_hash == record.proposal_hash
        assert network.post.call_count == 1

    def test_already_recorded_without_our_endorsement(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        stored = endorsed_record(SAFE_ADDRESS, 5, signers[1:2])
        network.post.side_effect = [http_error(422, "already exists"), {"message": ""}]
        network.get_optional.return_value = record_json(stored)

        asyncio.run(client.propose(record.proposal, record.endorsements[0]))

        confirm_endpoint = network.post.call_args_list[1][0][0]
        assert confirm_endpoint.endswith("/confirmations/")

    def test_conflicting_content(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        stored = record_json(record)
        stored["value"] = "1"
        network.post.side_effect = http_error(422, "already exists")
        network.get_optional.return_value = stored

        with pytest.raises(ProposalConflict):
            asyncio.run(client.propose(record.proposal, record.endorsements[0]))

    def test_rejected_signer(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.post.side_effect = http_error(422, "Signer is not an owner")
        network.get_optional.return_value = None

        with pytest.raises(EndorsementRejected):
            asyncio.run(client.propose(record.proposal, record.endorsements[0]))

    def test_other_rejection(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.post.side_effect = http_error(400, "Bad payload")
        network.get_optional.return_value = None

        with pytest.raises(RelayRejected) as exc_info:
            asyncio.run(client.propose(record.proposal, record.endorsements[0]))
        assert exc_info.value.status_code == 400

    def test_unavailable_does_not_reconcile(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.post.side_effect = http_error(503, "down", retryable=True)

        with pytest.raises(RelayUnavailable):
            asyncio.run(client.propose(record.proposal, record.endorsements[0]))
        network.get_optional.assert_not_called()


class TestConfirm:
    def test_posts_signature(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.post.return_value = {"message": ""}

        asyncio.run(client.confirm(record.proposal_hash, record.endorsements[1]))

        endpoint = network.post.call_args[0][0]
        assert endpoint == f"/api/v1/multisig-transactions/{record.proposal_hash}/confirmations/"
        assert network.post.call_args[1]["json"] == {
            "signature": record.endorsements[1].signature_hex
        }

    def test_duplicate_confirmation_is_noop(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.post.side_effect = http_error(400, "Signature already exists")
        network.get_optional.return_value = record_json(record)

        asyncio.run(client.confirm(record.proposal_hash, record.endorsements[1]))

    def test_not_found(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        network.post.side_effect = http_error(404, "Not found")
        network.get_optional.return_value = None

        with pytest.raises(ProposalNotFound):
            asyncio.run(client.confirm(record.proposal_hash, record.endorsements[1]))


class TestListPending:
    def test_paginates(self, client, network, signers):
        first = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        second = endorsed_record(SAFE_ADDRESS, 6, signers[:1])
        network.get.side_effect = [
            {"results": [record_json(first)], "next": "page-2"},
            {"results": [record_json(second)], "next": None},
        ]

        pending = asyncio.run(client.list_pending(SAFE_ADDRESS))

        assert [r.nonce for r in pending] == [5, 6]
        offsets = [c[1]["params"]["offset"] for c in network.get.call_args_list]
        assert offsets == [0, 1]

    def test_skips_executed(self, client, network, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        network.get.return_value = {
            "results": [record_json(record, executed=True, successful=True)],
            "next": None,
        }
        assert asyncio.run(client.list_pending(SAFE_ADDRESS)) == []


class TestTransport:
    def test_retries_through_network_client(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:1])
        client = SafeTransactionServiceClient(
            RELAY_URL, chain_id=1, retry_config=RetryConfig(base_delay=0.0)
        )
        ok = Mock(status_code=200)
        ok.json.return_value = record_json(record)

        with patch("requests.get", side_effect=[ConnectionError("reset"), ok]) as mock_get:
            fetched = asyncio.run(client.fetch(record.proposal_hash))

        assert fetched.proposal_hash == record.proposal_hash
        assert mock_get.call_count == 2
