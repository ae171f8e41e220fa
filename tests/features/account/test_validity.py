"""Tests for the acceptance rule that decides whether a proposal can execute."""

from dataclasses import replace
from itertools import combinations

import pytest

from multisig_coordinator.features.account.validity import counted_signers, evaluate
from multisig_coordinator.shared.models import AccountState, Endorsement, ValidityReason
from tests.conftest import SAFE_ADDRESS, endorsed_record, make_signer


@pytest.fixture
def signers():
    return [make_signer(1), make_signer(2), make_signer(3)]


def state_for(signers, threshold=2, nonce=5):
    return AccountState(
        account=SAFE_ADDRESS,
        signers=frozenset(s.identity for s in signers),
        threshold=threshold,
        nonce=nonce,
    )


class TestAccountState:
    def test_threshold_must_be_positive(self, signers):
        with pytest.raises(ValueError):
            state_for(signers, threshold=0)

    def test_threshold_cannot_exceed_signers(self, signers):
        with pytest.raises(ValueError):
            state_for(signers, threshold=4)

    def test_negative_nonce(self, signers):
        with pytest.raises(ValueError):
            state_for(signers, nonce=-1)

    def test_is_signer_case_insensitive(self, signers):
        assert state_for(signers).is_signer(signers[0].identity.lower())


class TestCountedSigners:
    def test_counts_members(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        assert counted_signers(record, state_for(signers)) == [
            signers[0].identity,
            signers[1].identity,
        ]

    def test_non_member_not_counted(self, signers):
        outsider = make_signer(9)
        record = endorsed_record(SAFE_ADDRESS, 5, [signers[0], outsider])
        assert counted_signers(record, state_for(signers)) == [signers[0].identity]

    def test_removed_signer_not_grandfathered(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        shrunk = state_for([signers[0], signers[2]])
        assert counted_signers(record, shrunk) == [signers[0].identity]

    def test_duplicate_endorsements_count_once(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, [signers[0]])
        duplicate = record.endorsements[0]
        record = replace(record, endorsements=(duplicate, duplicate))
        assert counted_signers(record, state_for(signers)) == [signers[0].identity]

    def test_endorsement_for_other_hash_ignored(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, [signers[0]])
        other = endorsed_record(SAFE_ADDRESS, 6, [signers[1]])
        record = replace(record, endorsements=record.endorsements + other.endorsements)
        assert counted_signers(record, state_for(signers)) == [signers[0].identity]

    def test_bad_signature_only_rejected_when_verifying(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, [signers[0]])
        forged = Endorsement(
            proposal_hash=record.proposal_hash,
            signer=signers[1].identity,
            signature=record.endorsements[0].signature,
        )
        record = record.with_endorsement(forged)

        assert len(counted_signers(record, state_for(signers))) == 2
        assert counted_signers(record, state_for(signers), verify_signatures=True) == [
            signers[0].identity
        ]


class TestEvaluate:
    def test_valid_at_threshold_and_current_nonce(self, signers):
        report = evaluate(endorsed_record(SAFE_ADDRESS, 5, signers[:2]), state_for(signers))
        assert report.is_valid
        assert report.reason == ValidityReason.OK
        assert report.approvals == 2
        assert report.missing == 0

    def test_below_threshold(self, signers):
        report = evaluate(endorsed_record(SAFE_ADDRESS, 5, signers[:1]), state_for(signers))
        assert report.reason == ValidityReason.THRESHOLD_NOT_MET
        assert report.missing == 1
        assert not report.is_valid

    def test_stale_nonce_wins_over_threshold(self, signers):
        report = evaluate(endorsed_record(SAFE_ADDRESS, 4, signers), state_for(signers))
        assert report.reason == ValidityReason.STALE_NONCE
        assert report.current_nonce == 5
        assert report.proposal_nonce == 4

    def test_future_nonce(self, signers):
        report = evaluate(endorsed_record(SAFE_ADDRESS, 6, signers[:2]), state_for(signers))
        assert report.reason == ValidityReason.NONCE_AHEAD
        assert not report.is_valid

    def test_future_nonce_short_of_threshold(self, signers):
        report = evaluate(endorsed_record(SAFE_ADDRESS, 6, signers[:1]), state_for(signers))
        assert report.reason == ValidityReason.THRESHOLD_NOT_MET

    def test_threshold_raised_after_endorsing(self, signers):
        record = endorsed_record(SAFE_ADDRESS, 5, signers[:2])
        assert evaluate(record, state_for(signers, threshold=2)).is_valid
        assert not evaluate(record, state_for(signers, threshold=3)).is_valid


SUBSETS = [
    subset for size in range(4) for subset in combinations(range(3), size)
]


class TestThresholdOverAllSubsets:
    @pytest.mark.parametrize("threshold", [1, 2, 3])
    @pytest.mark.parametrize("subset", SUBSETS)
    def test_valid_exactly_when_threshold_met(self, signers, threshold, subset):
        record = endorsed_record(SAFE_ADDRESS, 5, [signers[i] for i in subset])
        report = evaluate(record, state_for(signers, threshold=threshold))

        assert report.is_valid == (len(subset) >= threshold)
        assert report.approvals == len(subset)

    @pytest.mark.parametrize("threshold", [1, 2, 3])
    @pytest.mark.parametrize("subset", SUBSETS)
    @pytest.mark.parametrize("nonce", [4, 6])
    def test_never_valid_at_other_nonce(self, signers, threshold, subset, nonce):
        record = endorsed_record(SAFE_ADDRESS, nonce, [signers[i] for i in subset])
        assert not evaluate(record, state_for(signers, threshold=threshold)).is_valid
