from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import Conflict, Forbidden, InvalidTransition, InvariantViolation, NotFound
from app.models.base import utcnow
from app.models.contract import Contract, ContractStatusEnum
from app.models.job import JobStatusEnum
from app.models.notification import Notification
from app.models.proposal import Proposal, ProposalStatusEnum
from app.repositories.proposal_repo import ProposalRepository
from app.schemas.proposal_schema import ProposalCreate
from app.services.contract_service import ContractService
from app.services.proposal_service import ProposalService


async def submit(db, job, freelancer, amount):
    return await ProposalService(db).submit_proposal(
        job.job_id,
        ProposalCreate(message="Proposal", proposed_amount=Decimal(amount)),
        freelancer,
    )


async def count_contracts(db, job_id):
    result = await db.execute(select(func.count()).select_from(Contract).where(Contract.job_id == job_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_accept_rejects_siblings_and_forms_contract(db, open_job, client_user, freelancer, other_freelancer):
    p1 = await submit(db, open_job, freelancer, "4500")
    p2 = await submit(db, open_job, other_freelancer, "4800")

    accepted, contract = await ProposalService(db).accept_proposal(p2.proposal_id, client_user)

    await db.refresh(p1)
    await db.refresh(open_job)
    assert accepted.status == ProposalStatusEnum.accepted
    assert p1.status == ProposalStatusEnum.rejected
    assert contract.agreed_amount == Decimal("4800")
    assert contract.status == ContractStatusEnum.active
    assert contract.proposal_id == p2.proposal_id
    assert contract.freelancer_id == other_freelancer.user_id
    assert open_job.status == JobStatusEnum.contracted
    assert await count_contracts(db, open_job.job_id) == 1


@pytest.mark.asyncio
async def test_accept_notifies_winner_and_rejected_freelancers(db, open_job, client_user, freelancer, other_freelancer, publisher):
    p1 = await submit(db, open_job, freelancer, "4500")
    p2 = await submit(db, open_job, other_freelancer, "4800")
    publisher.events.clear()

    await ProposalService(db).accept_proposal(p2.proposal_id, client_user)

    pushed = {(user_id, payload["type"]) for user_id, _, payload in publisher.events}
    assert (other_freelancer.user_id, "PROPOSAL_ACCEPTED") in pushed
    assert (freelancer.user_id, "PROPOSAL_REJECTED") in pushed
    assert (client_user.user_id, "CONTRACT_CREATED") in pushed


@pytest.mark.asyncio
async def test_second_accept_on_contracted_job_conflicts(db, open_job, client_user, freelancer, other_freelancer):
    job_id = open_job.job_id
    p1 = await submit(db, open_job, freelancer, "4500")
    p2 = await submit(db, open_job, other_freelancer, "4800")
    service = ProposalService(db)
    await service.accept_proposal(p2.proposal_id, client_user)

    with pytest.raises(Conflict):
        await service.accept_proposal(p1.proposal_id, client_user)
    assert await count_contracts(db, job_id) == 1


@pytest.mark.asyncio
async def test_accept_is_all_or_nothing(db, open_job, client_user, freelancer, other_freelancer, monkeypatch):
    p1 = await submit(db, open_job, freelancer, "4500")
    p2 = await submit(db, open_job, other_freelancer, "4800")

    async def broken_formation(self, proposal):
        raise RuntimeError("database went away")

    monkeypatch.setattr(ContractService, "form_from_accepted_proposal", broken_formation)

    with pytest.raises(RuntimeError):
        await ProposalService(db).accept_proposal(p2.proposal_id, client_user)

    for obj in (p1, p2, open_job):
        await db.refresh(obj)
    assert p1.status == ProposalStatusEnum.pending
    assert p2.status == ProposalStatusEnum.pending
    assert open_job.status == JobStatusEnum.open
    assert await count_contracts(db, open_job.job_id) == 0


@pytest.mark.asyncio
async def test_offer_then_freelancer_accepts(db, open_job, client_user, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    proposal_id = proposal.proposal_id
    service = ProposalService(db)

    offered = await service.send_offer(proposal_id, client_user)
    assert offered.status == ProposalStatusEnum.offered

    with pytest.raises(InvalidTransition):
        await service.accept_proposal(proposal_id, client_user)

    accepted, contract = await service.accept_proposal(proposal_id, freelancer)
    assert accepted.status == ProposalStatusEnum.accepted
    assert contract.agreed_amount == Decimal("3000")


@pytest.mark.asyncio
async def test_freelancer_cannot_accept_without_offer(db, open_job, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    with pytest.raises(InvalidTransition):
        await ProposalService(db).accept_proposal(proposal.proposal_id, freelancer)


@pytest.mark.asyncio
async def test_freelancer_rejects_offer(db, open_job, client_user, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    service = ProposalService(db)
    await service.send_offer(proposal.proposal_id, client_user)

    rejected = await service.reject_offer(proposal.proposal_id, freelancer)
    assert rejected.status == ProposalStatusEnum.rejected


@pytest.mark.asyncio
async def test_withdrawn_proposal_cannot_be_accepted(db, open_job, client_user, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    service = ProposalService(db)
    await service.withdraw_proposal(proposal.proposal_id, freelancer)

    with pytest.raises(InvalidTransition) as exc:
        await service.accept_proposal(proposal.proposal_id, client_user)
    assert exc.value.detail == "提案已撤回"


@pytest.mark.asyncio
async def test_offered_proposal_cannot_be_withdrawn(db, open_job, client_user, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    service = ProposalService(db)
    await service.send_offer(proposal.proposal_id, client_user)

    with pytest.raises(InvalidTransition):
        await service.withdraw_proposal(proposal.proposal_id, freelancer)


@pytest.mark.asyncio
async def test_client_declines(db, open_job, client_user, freelancer):
    proposal = await submit(db, open_job, freelancer, "3000")
    declined = await ProposalService(db).decline_proposal(proposal.proposal_id, client_user)
    assert declined.status == ProposalStatusEnum.rejected


@pytest.mark.asyncio
async def test_role_and_ownership_checks(db, open_job, client_user, freelancer, other_freelancer):
    service = ProposalService(db)
    with pytest.raises(Forbidden):
        await service.submit_proposal(
            open_job.job_id, ProposalCreate(message="x", proposed_amount=Decimal("1")), client_user
        )

    proposal = await submit(db, open_job, freelancer, "3000")
    proposal_id = proposal.proposal_id
    with pytest.raises(Forbidden):
        await service.accept_proposal(proposal_id, other_freelancer)
    with pytest.raises(Forbidden):
        await service.withdraw_proposal(proposal_id, other_freelancer)
    with pytest.raises(Forbidden):
        await service.send_offer(proposal_id, freelancer)


@pytest.mark.asyncio
async def test_duplicate_submission_conflicts(db, open_job, freelancer):
    await submit(db, open_job, freelancer, "3000")
    with pytest.raises(Conflict):
        await submit(db, open_job, freelancer, "2900")


@pytest.mark.asyncio
async def test_submit_to_draft_job_is_invalid(db, client_user, freelancer):
    from app.schemas.job_schema import JobCreate
    from app.services.job_service import JobService

    draft = await JobService(db).create_job(JobCreate(title="t", description="d"), client_user)
    with pytest.raises(InvalidTransition):
        await submit(db, draft, freelancer, "100")


@pytest.mark.asyncio
async def test_missing_proposal(db, client_user):
    with pytest.raises(NotFound):
        await ProposalService(db).accept_proposal("nope", client_user)


@pytest.mark.asyncio
async def test_submission_notifies_client(db, open_job, client_user, freelancer):
    await submit(db, open_job, freelancer, "3000")
    result = await db.execute(
        select(Notification).where(Notification.user_id == client_user.user_id)
    )
    types = [n.type for n in result.scalars().all()]
    assert types == ["PROPOSAL_SUBMITTED"]


@pytest.mark.asyncio
async def test_listing_visibility(db, open_job, client_user, freelancer, other_freelancer):
    service = ProposalService(db)
    proposal = await submit(db, open_job, freelancer, "3000")

    assert [p.proposal_id for p in await service.list_for_job(open_job.job_id, client_user)] == [proposal.proposal_id]
    assert [p.proposal_id for p in await service.list_mine(freelancer)] == [proposal.proposal_id]
    with pytest.raises(Forbidden):
        await service.list_for_job(open_job.job_id, freelancer)
    with pytest.raises(Forbidden):
        await service.get_proposal(proposal.proposal_id, other_freelancer)


def race_proposal_update(monkeypatch, when_status, other_status):
    """在鎖定之後、compare-and-swap 之前，模擬另一個請求先改掉提案狀態"""
    original = ProposalRepository.compare_and_set_status

    async def racing(self, proposal_id, expected, new_status):
        if new_status == when_status:
            await self.db.execute(
                update(Proposal)
                .where(Proposal.proposal_id == proposal_id)
                .values(status=other_status, updated_at=utcnow())
            )
        return await original(self, proposal_id, expected, new_status)

    monkeypatch.setattr(ProposalRepository, "compare_and_set_status", racing)


@pytest.mark.asyncio
async def test_accept_that_loses_to_withdraw(db, open_job, client_user, freelancer, other_freelancer, publisher, monkeypatch):
    p1 = await submit(db, open_job, freelancer, "4500")
    p2 = await submit(db, open_job, other_freelancer, "4800")
    p1_id, job_id = p1.proposal_id, open_job.job_id
    publisher.events.clear()
    race_proposal_update(monkeypatch, ProposalStatusEnum.accepted, ProposalStatusEnum.withdrawn)

    with pytest.raises(InvalidTransition) as exc:
        await ProposalService(db).accept_proposal(p1_id, client_user)
    assert exc.value.detail == "提案已撤回"

    for obj in (p1, p2, open_job):
        await db.refresh(obj)
    assert p1.status == ProposalStatusEnum.pending
    assert p2.status == ProposalStatusEnum.pending
    assert open_job.status == JobStatusEnum.open
    assert await count_contracts(db, job_id) == 0
    assert publisher.events == []


@pytest.mark.asyncio
async def test_offer_that_loses_the_race_conflicts(db, open_job, client_user, freelancer, publisher, monkeypatch):
    proposal = await submit(db, open_job, freelancer, "3000")
    proposal_id = proposal.proposal_id
    publisher.events.clear()
    race_proposal_update(monkeypatch, ProposalStatusEnum.offered, ProposalStatusEnum.offered)

    with pytest.raises(Conflict):
        await ProposalService(db).send_offer(proposal_id, client_user)

    await db.refresh(proposal)
    assert proposal.status == ProposalStatusEnum.pending
    result = await db.execute(
        select(func.count()).select_from(Notification)
        .where(Notification.user_id == freelancer.user_id, Notification.type == "PROPOSAL_OFFERED")
    )
    assert result.scalar_one() == 0
    assert publisher.events == []


@pytest.mark.asyncio
async def test_contract_requires_a_single_accepted_proposal(db, open_job, freelancer, other_freelancer):
    p1 = await submit(db, open_job, freelancer, "4500")
    await submit(db, open_job, other_freelancer, "4800")
    job_id = open_job.job_id
    await db.execute(
        update(Proposal)
        .where(Proposal.job_id == job_id)
        .values(status=ProposalStatusEnum.accepted, updated_at=utcnow())
    )
    await db.commit()
    await db.refresh(p1)

    with pytest.raises(InvariantViolation):
        await ContractService(db).form_from_accepted_proposal(p1)
    assert await count_contracts(db, job_id) == 0
