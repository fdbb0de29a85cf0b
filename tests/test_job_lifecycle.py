from decimal import Decimal

import pytest

from app.core.exceptions import Conflict, Forbidden, InvalidTransition, NotFound
from app.models.job import JobStatusEnum
from app.schemas.job_schema import JobCreate, JobUpdate
from app.schemas.proposal_schema import ProposalCreate
from app.services.job_service import JobService
from app.services.proposal_service import ProposalService


def job_data(**overrides):
    data = {"title": "Logo design", "description": "A new logo", "budget": Decimal("1200")}
    data.update(overrides)
    return JobCreate(**data)


@pytest.mark.asyncio
async def test_new_job_starts_as_draft(db, client_user):
    job = await JobService(db).create_job(job_data(), client_user)
    assert job.status == JobStatusEnum.draft
    assert job.client_id == client_user.user_id


@pytest.mark.asyncio
async def test_only_clients_create_jobs(db, freelancer):
    with pytest.raises(Forbidden):
        await JobService(db).create_job(job_data(), freelancer)


@pytest.mark.asyncio
async def test_publish_moves_draft_to_open(db, client_user):
    service = JobService(db)
    job = await service.create_job(job_data(), client_user)
    job = await service.publish(job.job_id, client_user)
    assert job.status == JobStatusEnum.open


@pytest.mark.asyncio
async def test_publish_twice_is_invalid(db, open_job, client_user):
    with pytest.raises(InvalidTransition):
        await JobService(db).publish(open_job.job_id, client_user)


@pytest.mark.asyncio
async def test_publish_by_someone_else_is_forbidden(db, client_user, make_user):
    from app.models.user import UserRoleEnum

    service = JobService(db)
    job = await service.create_job(job_data(), client_user)
    intruder = await make_user(UserRoleEnum.client)
    with pytest.raises(Forbidden):
        await service.publish(job.job_id, intruder)

    await db.refresh(job)
    assert job.status == JobStatusEnum.draft


@pytest.mark.asyncio
async def test_publish_missing_job(db, client_user):
    with pytest.raises(NotFound):
        await JobService(db).publish("does-not-exist", client_user)


@pytest.mark.asyncio
async def test_update_open_job_without_proposals(db, open_job, client_user):
    job = await JobService(db).update_job(open_job.job_id, JobUpdate(title="Landing page v2"), client_user)
    assert job.title == "Landing page v2"
    assert job.description == "Marketing site"


@pytest.mark.asyncio
async def test_update_after_proposal_conflicts(db, open_job, client_user, freelancer):
    await ProposalService(db).submit_proposal(
        open_job.job_id, ProposalCreate(message="hi", proposed_amount=Decimal("100")), freelancer
    )
    with pytest.raises(Conflict):
        await JobService(db).update_job(open_job.job_id, JobUpdate(title="changed"), client_user)


@pytest.mark.asyncio
async def test_delete_draft(db, client_user):
    service = JobService(db)
    job = await service.create_job(job_data(), client_user)
    await service.delete_job(job.job_id, client_user)
    with pytest.raises(NotFound):
        await service.get_job(job.job_id)


@pytest.mark.asyncio
async def test_delete_open_job_with_proposals_conflicts(db, open_job, client_user, freelancer):
    await ProposalService(db).submit_proposal(
        open_job.job_id, ProposalCreate(message="hi", proposed_amount=Decimal("100")), freelancer
    )
    with pytest.raises(Conflict):
        await JobService(db).delete_job(open_job.job_id, client_user)


@pytest.mark.asyncio
async def test_delete_contracted_job_conflicts(db, contracted, client_user):
    with pytest.raises(Conflict):
        await JobService(db).delete_job(contracted.job.job_id, client_user)


@pytest.mark.asyncio
async def test_start_requires_paid_escrow(db, contracted):
    with pytest.raises(InvalidTransition):
        await JobService(db).start(contracted.job.job_id)

    await db.refresh(contracted.job)
    assert contracted.job.status == JobStatusEnum.contracted


@pytest.mark.asyncio
async def test_complete_requires_in_progress(db, contracted, client_user):
    with pytest.raises(InvalidTransition):
        await JobService(db).complete(contracted.job.job_id, client_user)


@pytest.mark.asyncio
async def test_only_owner_completes(db, funded, freelancer):
    with pytest.raises(Forbidden):
        await JobService(db).complete(funded.job.job_id, freelancer)


@pytest.mark.asyncio
async def test_list_open_and_mine(db, open_job, client_user):
    service = JobService(db)
    await service.create_job(job_data(title="Still a draft"), client_user)

    open_ids = [j.job_id for j in await service.list_open_jobs()]
    mine = await service.list_my_jobs(client_user)

    assert open_ids == [open_job.job_id]
    assert len(mine) == 2
