import os
import sys
import uuid
from decimal import Decimal
from types import SimpleNamespace

# Ensure the backend package is on sys.path for imports during tests
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.exceptions import GatewayError
from app.core.payment_gateway import GatewayVerification
from app.core.websocket_manager import manager
from app.models import audit_log, contract, escrow, job, notification, proposal, wallet  # noqa: F401
from app.models.user import User, UserRoleEnum
from app.schemas.job_schema import JobCreate
from app.schemas.proposal_schema import ProposalCreate
from app.schemas.user_schema import AuthenticatedUser
from app.services.escrow_service import EscrowService
from app.services.job_service import JobService
from app.services.proposal_service import ProposalService


class RecordingPublisher:
    """Stands in for the websocket manager; records every push."""

    def __init__(self):
        self.events = []
        self.fail = False

    async def publish(self, user_id, event_name, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.events.append((user_id, event_name, payload))


class FakeGateway:
    def __init__(self):
        self.checkout_calls = []
        self.verify_calls = []
        self.fail_checkout = False
        self.verify_results = {}
        self.verify_errors = set()

    async def initiate_checkout(self, reference, amount, currency):
        self.checkout_calls.append((reference, amount, currency))
        if self.fail_checkout:
            raise GatewayError()
        return f"https://checkout.test/{reference}"

    async def verify(self, reference):
        self.verify_calls.append(reference)
        if reference in self.verify_errors:
            raise GatewayError()
        status, paid_amount = self.verify_results.get(reference, ("pending", None))
        return GatewayVerification(status=status, paid_amount=paid_amount)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    Session = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with Session() as session:
        yield session


@pytest.fixture(autouse=True)
def publisher(monkeypatch):
    recorder = RecordingPublisher()
    monkeypatch.setattr(manager, "publish", recorder.publish)
    return recorder


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_user(db):
    async def _make(role: UserRoleEnum, is_active: bool = True) -> AuthenticatedUser:
        user_id = str(uuid.uuid4())
        db.add(User(user_id=user_id, email=f"{user_id[:8]}@example.com", role=role, is_active=is_active))
        await db.commit()
        return AuthenticatedUser(user_id=user_id, role=role)
    return _make


@pytest_asyncio.fixture
async def client_user(make_user):
    return await make_user(UserRoleEnum.client)


@pytest_asyncio.fixture
async def freelancer(make_user):
    return await make_user(UserRoleEnum.freelancer)


@pytest_asyncio.fixture
async def other_freelancer(make_user):
    return await make_user(UserRoleEnum.freelancer)


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user(UserRoleEnum.admin)


@pytest_asyncio.fixture
async def open_job(db, client_user):
    service = JobService(db)
    draft = await service.create_job(
        JobCreate(title="Landing page", description="Marketing site", budget=Decimal("5000")),
        client_user,
    )
    return await service.publish(draft.job_id, client_user)


@pytest_asyncio.fixture
async def contracted(db, open_job, client_user, freelancer):
    """Open job -> one proposal (4800) accepted by the client."""
    proposals = ProposalService(db)
    proposal = await proposals.submit_proposal(
        open_job.job_id,
        ProposalCreate(message="I can build it", proposed_amount=Decimal("4800")),
        freelancer,
    )
    proposal, contract = await proposals.accept_proposal(proposal.proposal_id, client_user)
    return SimpleNamespace(job=open_job, proposal=proposal, contract=contract)


@pytest_asyncio.fixture
async def funded(db, contracted, client_user, gateway):
    """Contracted job whose escrow payment has been confirmed by the gateway."""
    escrow_service = EscrowService(db, gateway)
    payment = await escrow_service.initiate(contracted.contract.contract_id, client_user)
    payment = await escrow_service.reconcile(payment.tx_ref, "success")
    contracted.payment = payment
    return contracted
