import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from app.core.exceptions import InvalidTransition
from app.models.contract import ContractStatusEnum
from app.models.escrow import EscrowStatusEnum, DisputeStatusEnum
from app.models.job import JobStatusEnum
from app.models.proposal import ProposalStatusEnum
from app.utils.state_machine import (
    JOB_MACHINE, JobEvent,
    PROPOSAL_MACHINE, ProposalEvent, proposal_status_after_accept,
    CONTRACT_MACHINE, ContractEvent,
    ESCROW_MACHINE, EscrowEvent,
    DISPUTE_MACHINE, DisputeEvent,
)


def test_job_happy_path():
    status = JobStatusEnum.draft
    for event in (JobEvent.publish, JobEvent.contract, JobEvent.start, JobEvent.complete):
        status = JOB_MACHINE.next_state(status, event)
    assert status == JobStatusEnum.completed


def test_job_cannot_publish_twice():
    with pytest.raises(InvalidTransition):
        JOB_MACHINE.next_state(JobStatusEnum.open, JobEvent.publish)


def test_job_cannot_skip_contracting():
    with pytest.raises(InvalidTransition):
        JOB_MACHINE.next_state(JobStatusEnum.open, JobEvent.start)


def test_client_direct_accept_goes_through_offered():
    assert proposal_status_after_accept(ProposalStatusEnum.pending, direct=True) == ProposalStatusEnum.accepted


def test_client_cannot_accept_own_offer():
    with pytest.raises(InvalidTransition):
        proposal_status_after_accept(ProposalStatusEnum.offered, direct=True)


def test_freelancer_accepts_only_offers():
    assert proposal_status_after_accept(ProposalStatusEnum.offered, direct=False) == ProposalStatusEnum.accepted
    with pytest.raises(InvalidTransition):
        proposal_status_after_accept(ProposalStatusEnum.pending, direct=False)


def test_withdrawn_proposal_reports_specific_reason():
    with pytest.raises(InvalidTransition) as exc:
        proposal_status_after_accept(ProposalStatusEnum.withdrawn, direct=True)
    assert exc.value.detail == "提案已撤回"


def test_offered_proposal_cannot_be_withdrawn():
    with pytest.raises(InvalidTransition):
        PROPOSAL_MACHINE.next_state(ProposalStatusEnum.offered, ProposalEvent.withdraw)


def test_sources_lists_every_state_accepting_an_event():
    assert set(PROPOSAL_MACHINE.sources(ProposalEvent.decline)) == {
        ProposalStatusEnum.pending, ProposalStatusEnum.offered
    }


def test_contract_terminal_states():
    assert CONTRACT_MACHINE.next_state(ContractStatusEnum.active, ContractEvent.cancel) == ContractStatusEnum.cancelled
    with pytest.raises(InvalidTransition) as exc:
        CONTRACT_MACHINE.next_state(ContractStatusEnum.cancelled, ContractEvent.complete)
    assert exc.value.detail == "合約已取消"


def test_release_and_refund_are_mutually_exclusive():
    released = ESCROW_MACHINE.next_state(EscrowStatusEnum.paid, EscrowEvent.release)
    assert released == EscrowStatusEnum.released
    for event in (EscrowEvent.release, EscrowEvent.refund, EscrowEvent.payment_succeeded):
        assert not ESCROW_MACHINE.can(released, event)
    with pytest.raises(InvalidTransition):
        ESCROW_MACHINE.next_state(EscrowStatusEnum.refunded, EscrowEvent.release)


def test_failed_payment_never_becomes_paid():
    with pytest.raises(InvalidTransition):
        ESCROW_MACHINE.next_state(EscrowStatusEnum.failed, EscrowEvent.payment_succeeded)


def test_dispute_resolves_once():
    resolved = DISPUTE_MACHINE.next_state(DisputeStatusEnum.open, DisputeEvent.resolve)
    with pytest.raises(InvalidTransition):
        DISPUTE_MACHINE.next_state(resolved, DisputeEvent.reject)
