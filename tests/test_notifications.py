import json

import pytest
from sqlalchemy import func, select

from app.core.database import unit_of_work
from app.core.exceptions import Forbidden, NotFound
from app.core.websocket_manager import ConnectionManager
from app.models.notification import Notification
from app.services.notification_service import NOTIFICATION_EVENT, NotificationService, NotificationType


async def count_rows(db, user_id):
    result = await db.execute(select(func.count()).select_from(Notification).where(Notification.user_id == user_id))
    return result.scalar_one()


class FakeWebSocket:
    def __init__(self, broken=False):
        self.sent = []
        self.broken = broken

    async def accept(self):
        pass

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("connection reset")
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_push_happens_after_commit(db, freelancer, publisher):
    service = NotificationService(db)
    async with unit_of_work(db):
        notification = await service.emit(freelancer.user_id, NotificationType.JOB_STARTED, "Work can start")
        assert publisher.events == []

    assert len(publisher.events) == 1
    user_id, event_name, payload = publisher.events[0]
    assert user_id == freelancer.user_id
    assert event_name == NOTIFICATION_EVENT
    assert payload["notification_id"] == notification.notification_id
    assert payload["is_read"] is False


@pytest.mark.asyncio
async def test_rollback_discards_notification_and_push(db, freelancer, publisher):
    service = NotificationService(db)
    with pytest.raises(RuntimeError):
        async with unit_of_work(db):
            await service.emit(freelancer.user_id, NotificationType.JOB_STARTED, "Work can start")
            raise RuntimeError("later step failed")

    assert publisher.events == []
    assert await count_rows(db, freelancer.user_id) == 0


@pytest.mark.asyncio
async def test_push_failure_keeps_committed_notification(db, freelancer, publisher):
    publisher.fail = True
    async with unit_of_work(db):
        await NotificationService(db).emit(freelancer.user_id, NotificationType.ESCROW_PAID, "Paid")

    assert await count_rows(db, freelancer.user_id) == 1


@pytest.mark.asyncio
async def test_event_key_deduplicates(db, freelancer, publisher):
    service = NotificationService(db)
    async with unit_of_work(db):
        first = await service.emit(freelancer.user_id, NotificationType.ESCROW_PAID, "Paid", event_key="escrow:1:paid")
    async with unit_of_work(db):
        second = await service.emit(freelancer.user_id, NotificationType.ESCROW_PAID, "Paid", event_key="escrow:1:paid")

    assert first.notification_id == second.notification_id
    assert await count_rows(db, freelancer.user_id) == 1
    assert len(publisher.events) == 1


@pytest.mark.asyncio
async def test_mark_all_read_only_touches_own_notifications(db, client_user, freelancer):
    service = NotificationService(db)
    async with unit_of_work(db):
        for i in range(3):
            await service.emit(freelancer.user_id, NotificationType.PROPOSAL_OFFERED, f"Offer {i}")
        await service.emit(client_user.user_id, NotificationType.PROPOSAL_SUBMITTED, "New proposal")

    assert await service.unread_count(freelancer) == 3
    assert await service.mark_all_as_read(freelancer) == 3
    assert await service.unread_count(freelancer) == 0
    assert await service.unread_count(client_user) == 1


@pytest.mark.asyncio
async def test_mark_single_notification(db, client_user, freelancer):
    service = NotificationService(db)
    async with unit_of_work(db):
        notification = await service.emit(freelancer.user_id, NotificationType.PROPOSAL_OFFERED, "Offer")
    notification_id = notification.notification_id

    with pytest.raises(Forbidden):
        await service.mark_notification_as_read(notification_id, client_user)
    with pytest.raises(NotFound):
        await service.mark_notification_as_read("missing", freelancer)

    marked = await service.mark_notification_as_read(notification_id, freelancer)
    assert marked.is_read is True
    assert await service.list_my_notifications(freelancer, unread_only=True) == []
    assert len(await service.list_my_notifications(freelancer)) == 1


@pytest.mark.asyncio
async def test_lifecycle_notifications_carry_links(db, contracted, freelancer):
    notifications = await NotificationService(db).list_my_notifications(freelancer)
    by_type = {n.type: n for n in notifications}

    assert set(by_type) == {"PROPOSAL_ACCEPTED", "CONTRACT_CREATED"}
    assert by_type["CONTRACT_CREATED"].link_url == f"/contracts/{contracted.contract.contract_id}"


@pytest.mark.asyncio
async def test_connection_manager_fans_out_and_drops_broken_sockets():
    hub = ConnectionManager()
    healthy, broken = FakeWebSocket(), FakeWebSocket(broken=True)
    await hub.connect("u1", healthy)
    await hub.connect("u1", broken)

    await hub.publish("u1", NOTIFICATION_EVENT, {"title": "hello"})
    await hub.publish("nobody", NOTIFICATION_EVENT, {"title": "ignored"})

    assert healthy.sent == [{"event": NOTIFICATION_EVENT, "data": {"title": "hello"}}]
    assert hub.active_connections["u1"] == [healthy]

    hub.disconnect("u1", healthy)
    assert "u1" not in hub.active_connections
