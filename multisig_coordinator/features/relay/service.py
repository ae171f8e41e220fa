"""Relay client for the Safe Transaction Service.

Reference: https://docs.safe.global/core-api/transaction-service-reference
"""

from __future__ import annotations

import asyncio
from typing import Any

from multisig_coordinator.features.builder.hashing import (
    BASE_GAS,
    GAS_PRICE,
    GAS_TOKEN,
    REFUND_RECEIVER,
    SAFE_TX_GAS,
)
from multisig_coordinator.shared.errors import (
    CoordinatorError,
    EndorsementRejected,
    ProposalConflict,
    ProposalNotFound,
    RelayRejected,
    RelayUnavailable,
)
from multisig_coordinator.shared.logging import get_logger
from multisig_coordinator.shared.models import (
    Endorsement,
    Operation,
    ProposalRecord,
    RecordStatus,
    TransactionIntent,
    TransactionProposal,
)
from multisig_coordinator.shared.network import (
    NetworkClient,
    NetworkError,
    NetworkErrorType,
    RetryConfig,
    TimeoutConfig,
)
from multisig_coordinator.shared.validation import normalize_address, normalize_hash

logger = get_logger(__name__)

SERVICE_URLS = {
    1: "https://safe-transaction-mainnet.safe.global",
    5: "https://safe-transaction-goerli.safe.global",
    10: "https://safe-transaction-optimism.safe.global",
    56: "https://safe-transaction-bsc.safe.global",
    100: "https://safe-transaction-gnosis-chain.safe.global",
    137: "https://safe-transaction-polygon.safe.global",
    8453: "https://safe-transaction-base.safe.global",
    42161: "https://safe-transaction-arbitrum.safe.global",
    11155111: "https://safe-transaction-sepolia.safe.global",
}

PAGE_SIZE = 100


def service_url_for_chain(chain_id: int) -> str:
    try:
        return SERVICE_URLS[chain_id]
    except KeyError:
        raise ValueError(
            f"No known transaction service for chain id {chain_id}; configure relay_url"
        ) from None


def _hex_to_bytes(value: str | None) -> bytes:
    if not value:
        return b""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


class SafeTransactionServiceClient:
    def __init__(
        self,
        base_url: str,
        chain_id: int,
        timeout_config: TimeoutConfig | None = None,
        retry_config: RetryConfig | None = None,
        api_key: str | None = None,
        origin: str = "multisig-coordinator",
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self.chain_id = chain_id
        self.origin = origin
        self._network_client = NetworkClient(
            base_url=base_url,
            timeout_config=timeout_config,
            retry_config=retry_config,
            headers=headers,
        )

    @classmethod
    def for_chain(cls, chain_id: int, **kwargs: Any) -> "SafeTransactionServiceClient":
        return cls(service_url_for_chain(chain_id), chain_id, **kwargs)

    def _map_error(
        self, error: NetworkError, proposal_hash: str | None = None
    ) -> CoordinatorError:
        if error.retryable or error.error_type in (
            NetworkErrorType.TIMEOUT,
            NetworkErrorType.CONNECTION_ERROR,
        ):
            return RelayUnavailable(error.message, proposal_hash)

        if error.error_type != NetworkErrorType.HTTP_ERROR:
            return RelayUnavailable(error.message, proposal_hash)

        text = (error.response_text or "").lower()
        if error.status_code == 404:
            return ProposalNotFound(error.message, proposal_hash)
        if "owner" in text or "signature" in text or "signer" in text:
            return EndorsementRejected(error.message, proposal_hash)
        if "exist" in text or "conflict" in text or "already" in text:
            return ProposalConflict(error.message, proposal_hash)
        return RelayRejected(error.message, proposal_hash, status_code=error.status_code)

    def _record_from_json(self, data: dict[str, Any]) -> ProposalRecord:
        proposal_hash = normalize_hash(data["safeTxHash"])
        decoded = data.get("dataDecoded") or {}
        intent = TransactionIntent(
            target=normalize_address(data["to"]),
            method=decoded.get("method", "") if isinstance(decoded, dict) else "",
            data=_hex_to_bytes(data.get("data")),
            value=int(data.get("value") or 0),
            operation=Operation(int(data.get("operation") or 0)),
        )
        proposal = TransactionProposal(
            intent=intent,
            account=normalize_address(data["safe"]),
            nonce=int(data["nonce"]),
            chain_id=self.chain_id,
            canonical_hash=proposal_hash,
        )

        confirmations = sorted(
            data.get("confirmations") or [],
            key=lambda c: c.get("submissionDate") or "",
        )
        endorsements = tuple(
            Endorsement(
                proposal_hash=proposal_hash,
                signer=normalize_address(c["owner"]),
                signature=_hex_to_bytes(c.get("signature")),
            )
            for c in confirmations
            if c.get("signature")
        )

        if data.get("isExecuted"):
            successful = data.get("isSuccessful")
            status = RecordStatus.FAILED if successful is False else RecordStatus.EXECUTED
        else:
            status = RecordStatus.PENDING

        return ProposalRecord(
            proposal=proposal,
            endorsements=endorsements,
            status=status,
            receipt_id=data.get("transactionHash"),
            failure_reason="inner call failed" if status == RecordStatus.FAILED else None,
        )

    def _propose_payload(
        self, proposal: TransactionProposal, endorsement: Endorsement
    ) -> dict[str, Any]:
        intent = proposal.intent
        return {
            "to": intent.target,
            "value": str(intent.value),
            "data": intent.data_hex if intent.data else None,
            "operation": int(intent.operation),
            "safeTxGas": str(SAFE_TX_GAS),
            "baseGas": str(BASE_GAS),
            "gasPrice": str(GAS_PRICE),
            "gasToken": GAS_TOKEN,
            "refundReceiver": REFUND_RECEIVER,
            "nonce": proposal.nonce,
            "contractTransactionHash": proposal.canonical_hash,
            "sender": endorsement.signer,
            "signature": endorsement.signature_hex,
            "origin": self.origin,
        }

    def _fetch_optional(self, proposal_hash: str) -> ProposalRecord | None:
        try:
            data = self._network_client.get_optional(
                f"/api/v1/multisig-transactions/{proposal_hash}/",
                context="Fetch multisig transaction",
            )
        except NetworkError as e:
            raise self._map_error(e, proposal_hash) from e
        return self._record_from_json(data) if data else None

    def _propose_sync(
        self, proposal: TransactionProposal, endorsement: Endorsement
    ) -> str:
        proposal_hash = proposal.canonical_hash
        try:
            self._network_client.post(
                f"/api/v1/safes/{proposal.account}/multisig-transactions/",
                context="Propose multisig transaction",
                json=self._propose_payload(proposal, endorsement),
            )
            logger.info("Proposed %s for %s", proposal_hash, proposal.account)
            return proposal_hash
        except NetworkError as e:
            if e.error_type != NetworkErrorType.HTTP_ERROR or e.retryable:
                raise self._map_error(e, proposal_hash) from e
            rejection = e

        # A refused propose is success when the identical proposal is already stored.
        existing = self._fetch_optional(proposal_hash)
        if existing is None:
            raise self._map_error(rejection, proposal_hash) from rejection
        if not existing.proposal.matches(proposal):
            raise ProposalConflict(
                f"A different proposal is already stored under {proposal_hash}",
                proposal_hash,
            ) from rejection
        if not existing.has_endorsement(endorsement.signer):
            self._confirm_sync(proposal_hash, endorsement)
        logger.info("Proposal %s already recorded by relay", proposal_hash)
        return proposal_hash

    def _confirm_sync(self, proposal_hash: str, endorsement: Endorsement) -> None:
        try:
            self._network_client.post(
                f"/api/v1/multisig-transactions/{proposal_hash}/confirmations/",
                context="Confirm multisig transaction",
                json={"signature": endorsement.signature_hex},
            )
            logger.info("Confirmed %s as %s", proposal_hash, endorsement.signer)
            return
        except NetworkError as e:
            if e.error_type != NetworkErrorType.HTTP_ERROR or e.retryable:
                raise self._map_error(e, proposal_hash) from e
            rejection = e

        existing = self._fetch_optional(proposal_hash)
        stored = existing.endorsement_for(endorsement.signer) if existing else None
        if stored is None:
            raise self._map_error(rejection, proposal_hash) from rejection
        if stored.signature != endorsement.signature:
            raise ProposalConflict(
                f"{endorsement.signer} already endorsed {proposal_hash} with a different signature",
                proposal_hash,
            ) from rejection
        logger.debug("Endorsement by %s already recorded", endorsement.signer)

    def _fetch_sync(self, proposal_hash: str) -> ProposalRecord:
        record = self._fetch_optional(proposal_hash)
        if record is None:
            raise ProposalNotFound(
                f"No proposal recorded under {proposal_hash}", proposal_hash
            )
        return record

    def _list_pending_sync(self, account: str) -> list[ProposalRecord]:
        records: list[ProposalRecord] = []
        offset = 0
        while True:
            try:
                data = self._network_client.get(
                    f"/api/v1/safes/{account}/multisig-transactions/",
                    context="List pending multisig transactions",
                    params={
                        "executed": "false",
                        "ordering": "nonce",
                        "limit": PAGE_SIZE,
                        "offset": offset,
                    },
                )
            except NetworkError as e:
                raise self._map_error(e) from e

            results = data.get("results", [])
            records.extend(self._record_from_json(r) for r in results)
            if not data.get("next") or not results:
                break
            offset += len(results)

        return [r for r in records if r.status == RecordStatus.PENDING]

    async def propose(
        self, proposal: TransactionProposal, first_endorsement: Endorsement
    ) -> str:
        return await asyncio.to_thread(self._propose_sync, proposal, first_endorsement)

    async def fetch(self, proposal_hash: str) -> ProposalRecord:
        return await asyncio.to_thread(self._fetch_sync, normalize_hash(proposal_hash))

    async def confirm(self, proposal_hash: str, endorsement: Endorsement) -> None:
        await asyncio.to_thread(
            self._confirm_sync, normalize_hash(proposal_hash), endorsement
        )

    async def list_pending(self, account: str) -> list[ProposalRecord]:
        return await asyncio.to_thread(
            self._list_pending_sync, normalize_address(account)
        )
