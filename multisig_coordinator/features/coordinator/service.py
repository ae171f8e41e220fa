"""Authorization coordinator: the proposal state machine.

Sequences build -> propose -> collect endorsements -> validate -> execute
over three capabilities: a relay that stores proposals, signers that endorse
them, and an account view over the execution layer. The coordinator keeps no
state of its own. Every operation starts from what the relay and the account
view report right now, so a proposal can be resumed from any process by its
hash, and a proposal whose nonce was consumed elsewhere is noticed instead of
trusted.

States::

    built -> proposed -> awaiting_threshold -> ready_to_execute -> executed
                  \\              \\                   \\
                   rejected       stale               failed / stale

``stale`` means the nonce was used by another transaction; the intent must
be rebuilt against the current nonce and signed again.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from multisig_coordinator.features.builder.service import TransactionBuilder
from multisig_coordinator.features.signer.service import verify_endorsement
from multisig_coordinator.shared.errors import (
    CoordinatorError,
    EndorsementRejected,
    ErrorKind,
    ExecutionReverted,
    ProposalConflict,
    SignatureDeclined,
    SignerUnavailable,
    StaleNonce,
)
from multisig_coordinator.shared.logging import ContextAdapter, get_logger
from multisig_coordinator.shared.models import (
    AuthorizationResult,
    Endorsement,
    Operation,
    ProposalRecord,
    ProposalStatus,
    RecordStatus,
    TransactionIntent,
    ValidityReason,
    ValidityReport,
)
from multisig_coordinator.shared.network import RetryConfig
from multisig_coordinator.shared.protocols import AccountView, RelayClient, Signer
from multisig_coordinator.shared.validation import (
    SignatureValidator,
    hash_to_bytes,
    normalize_hash,
)

logger = get_logger(__name__)

T = TypeVar("T")

STATUS_BY_ERROR_KIND = {
    ErrorKind.BUILD_ERROR: ProposalStatus.FAILED,
    ErrorKind.PROPOSAL_CONFLICT: ProposalStatus.REJECTED,
    ErrorKind.SIGNATURE_DECLINED: ProposalStatus.FAILED,
    ErrorKind.EXECUTION_REVERTED: ProposalStatus.FAILED,
    ErrorKind.STALE_NONCE: ProposalStatus.STALE,
}

STATUS_BY_REASON = {
    ValidityReason.OK: ProposalStatus.READY_TO_EXECUTE,
    ValidityReason.STALE_NONCE: ProposalStatus.STALE,
    ValidityReason.THRESHOLD_NOT_MET: ProposalStatus.AWAITING_THRESHOLD,
    ValidityReason.NONCE_AHEAD: ProposalStatus.AWAITING_THRESHOLD,
}


def status_for_error(error: CoordinatorError) -> ProposalStatus | None:
    """Terminal or re-entrant status an error leaves the proposal in, if any.

    Transient errors and rejected endorsements leave the proposal where it was.
    """
    return STATUS_BY_ERROR_KIND.get(error.kind)


def failure_result(error: CoordinatorError) -> AuthorizationResult | None:
    status = status_for_error(error)
    if status is None or error.proposal_hash is None:
        return None
    return AuthorizationResult(
        proposal_hash=error.proposal_hash,
        status=status,
        error_kind=error.kind.value,
        detail=error.message,
    )


class AuthorizationCoordinator:
    def __init__(
        self,
        relay: RelayClient,
        account_view: AccountView,
        builder: TransactionBuilder | None = None,
        retry_config: RetryConfig | None = None,
        signer_timeout: float = 60.0,
    ):
        self.relay = relay
        self.account_view = account_view
        self.builder = builder or TransactionBuilder(account_view.chain_id)
        self.retry_config = retry_config or RetryConfig()
        self.signer_timeout = signer_timeout

    def _log(self, proposal_hash: str | None = None, **context: Any) -> ContextAdapter:
        if proposal_hash:
            context["proposal_hash"] = proposal_hash
        return logger.with_context(**context)

    async def _retrying(
        self, operation: Callable[[], Awaitable[T]], context: str
    ) -> T:
        attempts = self.retry_config.max_retries + 1
        for attempt in range(attempts):
            try:
                return await operation()
            except CoordinatorError as e:
                if not e.retryable or attempt + 1 >= attempts:
                    raise
                delay = self.retry_config.calculate_delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    context,
                    attempt + 1,
                    attempts,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _fetch(self, proposal_hash: str) -> ProposalRecord:
        return await self._retrying(
            lambda: self.relay.fetch(proposal_hash), "Fetching proposal"
        )

    async def _sign_once(self, signer: Signer, proposal_hash: str) -> bytes:
        try:
            return await asyncio.wait_for(
                signer.sign(hash_to_bytes(proposal_hash)), timeout=self.signer_timeout
            )
        except asyncio.TimeoutError as e:
            raise SignerUnavailable(
                f"Signer {signer.identity} did not answer within {self.signer_timeout}s",
                proposal_hash,
            ) from e

    async def _obtain_endorsement(
        self, signer: Signer, proposal_hash: str
    ) -> Endorsement:
        try:
            signature = await self._retrying(
                lambda: self._sign_once(signer, proposal_hash),
                f"Signing by {signer.identity}",
            )
        except SignatureDeclined as e:
            e.proposal_hash = e.proposal_hash or proposal_hash
            self._log(proposal_hash).error("Signer %s declined: %s", signer.identity, e)
            raise

        if not SignatureValidator.validate(signature).is_valid:
            raise SignatureDeclined(
                f"Signer {signer.identity} returned a malformed signature", proposal_hash
            )

        endorsement = Endorsement(
            proposal_hash=proposal_hash,
            signer=signer.identity,
            signature=bytes(signature),
        )
        if not verify_endorsement(endorsement):
            raise SignatureDeclined(
                f"Signature from {signer.identity} does not verify for {proposal_hash}",
                proposal_hash,
            )
        return endorsement

    def _result(
        self,
        record: ProposalRecord,
        status: ProposalStatus,
        report: ValidityReport | None = None,
        receipt_id: str | None = None,
        detail: str = "",
    ) -> AuthorizationResult:
        return AuthorizationResult(
            proposal_hash=record.proposal_hash,
            status=status,
            record=record,
            approvals=report.approvals if report else len(record.signers()),
            threshold=report.threshold if report else 0,
            receipt_id=receipt_id or record.receipt_id,
            detail=detail,
            signers=report.counted_signers if report else tuple(record.signers()),
        )

    async def _landed(self, record: ProposalRecord) -> str | None:
        """Receipt of an execution of ``record`` the relay has not indexed yet."""
        receipt_id = await self._retrying(
            lambda: self.account_view.executed_receipt(record), "Looking up execution"
        )
        if receipt_id:
            self._log(record.proposal_hash, account=record.account).info(
                "Executed as %s before the relay indexed it", receipt_id
            )
        return receipt_id

    async def _derive(self, record: ProposalRecord) -> AuthorizationResult:
        if record.status == RecordStatus.EXECUTED:
            return self._result(record, ProposalStatus.EXECUTED)
        if record.status == RecordStatus.FAILED:
            return self._result(
                record,
                ProposalStatus.FAILED,
                detail=record.failure_reason or "",
            )

        report = await self.account_view.check(record)
        status = STATUS_BY_REASON[report.reason]
        detail = ""
        if report.reason == ValidityReason.THRESHOLD_NOT_MET:
            if report.approvals == 0:
                status = ProposalStatus.PROPOSED
            detail = f"{report.missing} more endorsement(s) required"
        elif report.reason == ValidityReason.NONCE_AHEAD:
            detail = f"queued behind nonce {report.current_nonce}"
        elif report.reason == ValidityReason.STALE_NONCE:
            receipt_id = await self._landed(record)
            if receipt_id:
                return self._result(
                    record, ProposalStatus.EXECUTED, report, receipt_id=receipt_id
                )
            detail = (
                f"nonce {report.proposal_nonce} already used; "
                f"account is at nonce {report.current_nonce}"
            )
        return self._result(record, status, report, detail=detail)

    def _stale(self, record: ProposalRecord, current_nonce: int) -> StaleNonce:
        self._log(record.proposal_hash, account=record.account).warning(
            "Proposal is stale: nonce %d already used (account at %d)",
            record.nonce,
            current_nonce,
        )
        return StaleNonce(
            f"Stale nonce: proposal {record.proposal_hash} was built for nonce "
            f"{record.nonce} but the account is at nonce {current_nonce}; rebuild it",
            record.proposal_hash,
            proposal_nonce=record.nonce,
            current_nonce=current_nonce,
        )

    async def propose(
        self,
        account: str,
        target: str,
        method: str,
        args: Sequence[Any],
        initiator: Signer,
        value: int = 0,
        nonce: int | None = None,
        operation: Operation | int = Operation.CALL,
    ) -> AuthorizationResult:
        """Build a contract call and record it with the relay.

        The initiator's endorsement is obtained before proposing so the relay
        never holds an unsigned proposal.

        Raises:
            BuildError: If the call cannot be built
            ProposalConflict: If the relay holds a different proposal at the hash
            StaleNonce: If an explicit nonce has already been used
        """
        intent = self.builder.build(target, method, args, value=value, operation=operation)
        return await self.propose_intent(account, intent, initiator, nonce=nonce)

    async def propose_intent(
        self,
        account: str,
        intent: TransactionIntent,
        initiator: Signer,
        nonce: int | None = None,
    ) -> AuthorizationResult:
        state = await self._retrying(
            lambda: self.account_view.current_state(account), "Reading account state"
        )
        if not state.is_signer(initiator.identity):
            raise EndorsementRejected(
                f"{initiator.identity} is not an owner of {state.account} and cannot propose"
            )
        if nonce is None:
            nonce = state.nonce

        proposal = self.builder.prepare(intent, account, nonce)
        log = self._log(proposal.canonical_hash, account=proposal.account)
        if nonce < state.nonce:
            raise self._stale(ProposalRecord(proposal=proposal), state.nonce)
        log.info(
            "Built %s on %s at nonce %d", intent.method, intent.target, nonce
        )

        endorsement = await self._obtain_endorsement(initiator, proposal.canonical_hash)
        try:
            relay_hash = normalize_hash(
                await self._retrying(
                    lambda: self.relay.propose(proposal, endorsement), "Proposing"
                )
            )
        except ProposalConflict as e:
            e.proposal_hash = e.proposal_hash or proposal.canonical_hash
            log.error("Relay rejected proposal: %s", e)
            raise

        if relay_hash != proposal.canonical_hash:
            raise ProposalConflict(
                f"Relay recorded hash {relay_hash} but the proposal hashes to "
                f"{proposal.canonical_hash}",
                proposal.canonical_hash,
            )

        log.info("%s -> %s", ProposalStatus.BUILT.value, ProposalStatus.PROPOSED.value)
        return await self.status(relay_hash)

    async def endorse(self, proposal_hash: str, signer: Signer) -> AuthorizationResult:
        """Add ``signer``'s endorsement to a recorded proposal.

        Signs the hash the relay returns, never a locally recomputed one. A
        signer that already endorsed is not asked again.

        Raises:
            StaleNonce: If the proposal nonce has been consumed
            EndorsementRejected: If the signer is not a current owner
            SignatureDeclined: If the signer refuses or its signature does not verify
        """
        record = await self._fetch(proposal_hash)
        if record.status != RecordStatus.PENDING:
            return await self._derive(record)

        log = self._log(record.proposal_hash, account=record.account)
        state = await self._retrying(
            lambda: self.account_view.current_state(record.account),
            "Reading account state",
        )
        if record.nonce < state.nonce:
            receipt_id = await self._landed(record)
            if receipt_id:
                return self._result(record, ProposalStatus.EXECUTED, receipt_id=receipt_id)
            raise self._stale(record, state.nonce)
        if not state.is_signer(signer.identity):
            log.warning("Rejected endorsement from non-owner %s", signer.identity)
            raise EndorsementRejected(
                f"{signer.identity} is not an owner of {record.account}",
                record.proposal_hash,
            )
        if record.has_endorsement(signer.identity):
            log.debug("%s already endorsed", signer.identity)
            return await self._derive(record)

        endorsement = await self._obtain_endorsement(signer, record.proposal_hash)
        await self._retrying(
            lambda: self.relay.confirm(record.proposal_hash, endorsement), "Confirming"
        )
        log.info("Endorsed by %s", signer.identity)

        result = await self.status(record.proposal_hash)
        if result.status == ProposalStatus.READY_TO_EXECUTE:
            log.info(
                "%s -> %s",
                ProposalStatus.AWAITING_THRESHOLD.value,
                ProposalStatus.READY_TO_EXECUTE.value,
            )
        return result

    async def status(self, proposal_hash: str) -> AuthorizationResult:
        """Re-derive the status of a proposal from the relay and the chain."""
        record = await self._fetch(proposal_hash)
        return await self._derive(record)

    async def _submit(self, record: ProposalRecord) -> str:
        log = self._log(record.proposal_hash, account=record.account)
        try:
            return await self._retrying(
                lambda: self.account_view.execute(record), "Execution"
            )
        except ExecutionReverted as e:
            # A lost response to an execution that landed makes the retry revert.
            latest = await self._fetch(record.proposal_hash)
            if latest.is_executed and latest.receipt_id:
                log.info("Already executed as %s", latest.receipt_id)
                return latest.receipt_id
            receipt_id = await self._landed(record)
            if receipt_id:
                return receipt_id
            state = await self._retrying(
                lambda: self.account_view.current_state(record.account),
                "Reading account state",
            )
            if state.nonce > record.nonce:
                raise self._stale(record, state.nonce) from e
            log.error("Execution reverted: %s", e.reason or e)
            raise

    async def execute(self, proposal_hash: str) -> AuthorizationResult:
        """Submit a proposal for execution once its threshold is met.

        Validity is re-checked at the moment of the attempt. A proposal still
        short of endorsements is reported as awaiting threshold, not raised.
        The submission itself is shielded from cancellation of the caller.

        Raises:
            StaleNonce: If the nonce was consumed before or during submission
            ExecutionReverted: If the execution layer rejects the transaction
        """
        record = await self._fetch(proposal_hash)
        if record.status != RecordStatus.PENDING:
            return await self._derive(record)

        log = self._log(record.proposal_hash, account=record.account)
        report = await self.account_view.check(record)
        if report.reason == ValidityReason.STALE_NONCE:
            receipt_id = await self._landed(record)
            if receipt_id:
                return self._result(
                    record, ProposalStatus.EXECUTED, report, receipt_id=receipt_id
                )
            raise self._stale(record, report.current_nonce)
        if not report.is_valid:
            log.info("Not executable yet: %s", report.reason.value)
            return await self._derive(record)

        log.info("Executing with %d/%d endorsements", report.approvals, report.threshold)
        receipt_id = await asyncio.shield(self._submit(record))
        log.info(
            "%s -> %s (%s)",
            ProposalStatus.READY_TO_EXECUTE.value,
            ProposalStatus.EXECUTED.value,
            receipt_id,
        )
        return self._result(
            record, ProposalStatus.EXECUTED, report, receipt_id=receipt_id
        )

    async def authorize(
        self,
        account: str,
        target: str,
        method: str,
        args: Sequence[Any],
        signers: Sequence[Signer],
        value: int = 0,
        operation: Operation | int = Operation.CALL,
    ) -> AuthorizationResult:
        """Run the whole pipeline: propose, endorse until ready, execute.

        The first signer proposes. Remaining signers are asked in order only
        until the threshold is met. Returns an ``awaiting_threshold`` result if
        the signers given are not enough.
        """
        if not signers:
            raise ValueError("At least one signer is required")

        result = await self.propose(
            account, target, method, args, signers[0], value=value, operation=operation
        )
        for signer in signers[1:]:
            if result.status != ProposalStatus.AWAITING_THRESHOLD:
                break
            result = await self.endorse(result.proposal_hash, signer)

        if result.status != ProposalStatus.READY_TO_EXECUTE:
            return result
        return await self.execute(result.proposal_hash)

    async def rebuild(self, proposal_hash: str, initiator: Signer) -> AuthorizationResult:
        """Propose the intent of a stale proposal again at the current nonce."""
        record = await self._fetch(proposal_hash)
        if record.status != RecordStatus.PENDING:
            raise ValueError(
                f"Proposal {record.proposal_hash} is {record.status.value}; nothing to rebuild"
            )
        self._log(record.proposal_hash, account=record.account).info(
            "Rebuilding from nonce %d", record.nonce
        )
        return await self.propose_intent(record.account, record.proposal.intent, initiator)

    async def pending(self, account: str) -> list[AuthorizationResult]:
        records = await self._retrying(
            lambda: self.relay.list_pending(account), "Listing pending proposals"
        )
        return [await self._derive(record) for record in records]
