"""Tests for the in-memory execution layer."""

import asyncio

import pytest

from multisig_coordinator.features.account.memory import InMemoryLedger
from multisig_coordinator.shared.errors import (
    BuildError,
    ExecutionReverted,
    ExecutionUnavailable,
)
from multisig_coordinator.shared.models import RecordStatus
from tests.conftest import TOKEN_ADDRESS, endorsed_record


class TestAccountSetup:
    def test_create_account_state(self, ledger, owners, safe):
        state = asyncio.run(ledger.current_state(safe))
        assert state.threshold == 2
        assert state.nonce == 5
        assert state.signers == frozenset(o.identity for o in owners)

    def test_create_account_generates_address(self, ledger, owners):
        account = ledger.create_account([o.identity for o in owners], threshold=1)
        assert asyncio.run(ledger.current_state(account)).nonce == 0

    def test_create_account_invalid_threshold(self, ledger, owners):
        with pytest.raises(ValueError):
            ledger.create_account([o.identity for o in owners], threshold=4)

    def test_unknown_account(self, ledger):
        with pytest.raises(BuildError, match="not a known multisig account"):
            asyncio.run(ledger.current_state(TOKEN_ADDRESS))

    def test_set_owners_and_threshold(self, ledger, owners, safe):
        ledger.set_owners(safe, [o.identity for o in owners[:2]])
        ledger.set_threshold(safe, 1)
        state = asyncio.run(ledger.current_state(safe))
        assert len(state.signers) == 2
        assert state.threshold == 1

    def test_set_owners_below_threshold_rejected(self, ledger, owners, safe):
        with pytest.raises(ValueError):
            ledger.set_owners(safe, [owners[0].identity])

    def test_bump_nonce(self, ledger, safe):
        ledger.bump_nonce(safe)
        assert asyncio.run(ledger.current_state(safe)).nonce == 6


class TestExecute:
    def test_execute_consumes_nonce(self, ledger, owners, safe):
        record = endorsed_record(safe, 5, owners[:2])

        receipt_id = asyncio.run(ledger.execute(record))

        assert receipt_id.startswith("0x")
        assert asyncio.run(ledger.current_state(safe)).nonce == 6
        assert asyncio.run(ledger.executed_receipt(record)) == receipt_id
        assert ledger.submissions == [record.proposal_hash]

    def test_execute_below_threshold_reverts(self, ledger, owners, safe):
        record = endorsed_record(safe, 5, owners[:1])
        with pytest.raises(ExecutionReverted) as exc_info:
            asyncio.run(ledger.execute(record))
        assert exc_info.value.reason.startswith("GS020")
        assert asyncio.run(ledger.current_state(safe)).nonce == 5

    def test_execute_stale_reverts(self, ledger, owners, safe):
        record = endorsed_record(safe, 5, owners[:2])
        ledger.bump_nonce(safe)
        with pytest.raises(ExecutionReverted) as exc_info:
            asyncio.run(ledger.execute(record))
        assert exc_info.value.reason.startswith("GS026")

    def test_execute_same_record_twice(self, ledger, owners, safe):
        record = endorsed_record(safe, 5, owners[:2])
        asyncio.run(ledger.execute(record))
        with pytest.raises(ExecutionReverted):
            asyncio.run(ledger.execute(record))
        assert asyncio.run(ledger.current_state(safe)).nonce == 6

    def test_failing_target(self, ledger, owners, safe):
        ledger.fail_calls_to(TOKEN_ADDRESS)
        record = endorsed_record(safe, 5, owners[:2])
        with pytest.raises(ExecutionReverted, match="GS013"):
            asyncio.run(ledger.execute(record))

    def test_injected_unavailability(self, ledger, owners, safe):
        ledger.fail_next_execution()
        record = endorsed_record(safe, 5, owners[:2])

        with pytest.raises(ExecutionUnavailable):
            asyncio.run(ledger.execute(record))
        assert asyncio.run(ledger.execute(record)).startswith("0x")

    def test_concurrent_executions_for_one_nonce(self, ledger, owners, safe):
        first = endorsed_record(safe, 5, owners[:2], amount=1)
        second = endorsed_record(safe, 5, owners[1:], amount=2)

        async def race():
            return await asyncio.gather(
                ledger.execute(first), ledger.execute(second), return_exceptions=True
            )

        results = asyncio.run(race())

        assert sum(isinstance(r, str) for r in results) == 1
        assert sum(isinstance(r, ExecutionReverted) for r in results) == 1
        assert asyncio.run(ledger.current_state(safe)).nonce == 6

    def test_reports_outcome_to_relay(self, ledger, relay, owners, safe):
        record = endorsed_record(safe, 5, owners[:2])
        asyncio.run(relay.propose(record.proposal, record.endorsements[0]))
        asyncio.run(relay.confirm(record.proposal_hash, record.endorsements[1]))

        receipt_id = asyncio.run(ledger.execute(record))

        stored = asyncio.run(relay.fetch(record.proposal_hash))
        assert stored.status == RecordStatus.EXECUTED
        assert stored.receipt_id == receipt_id

    def test_signature_verification_can_be_disabled(self, owners):
        ledger = InMemoryLedger(verify_signatures=False)
        safe = ledger.create_account([o.identity for o in owners], threshold=1)
        record = endorsed_record(safe, 0, [owners[0]])
        assert asyncio.run(ledger.is_valid(record)) is True
