from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import Conflict, InsufficientFunds, InvariantViolation
from app.models.base import utcnow
from app.models.wallet import PLATFORM_WALLET_ID, Wallet, WalletTransactionTypeEnum, WalletTypeEnum
from app.services.wallet_service import WalletService


@pytest.mark.asyncio
async def test_replayed_reference_posts_once(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)

    first = await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("100"), "job-1:release")
    again = await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("100"), "job-1:release")

    assert first.transaction_id == again.transaction_id
    assert Decimal(wallet.balance) == Decimal("100.00")
    assert len(await service.list_my_transactions(freelancer)) == 1


@pytest.mark.asyncio
async def test_debit_cannot_overdraw(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)
    await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("100"), "seed")

    with pytest.raises(InsufficientFunds):
        await service.post(wallet.wallet_id, WalletTransactionTypeEnum.debit, Decimal("150"), "too-much")

    await db.refresh(wallet)
    assert Decimal(wallet.balance) == Decimal("100.00")
    assert len(await service.list_my_transactions(freelancer)) == 1


@pytest.mark.asyncio
async def test_amount_must_be_positive(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)
    with pytest.raises(InvariantViolation):
        await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("0"), "zero")


@pytest.mark.asyncio
async def test_balance_matches_replayed_ledger(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)
    await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("250.50"), "a")
    await service.post(wallet.wallet_id, WalletTransactionTypeEnum.debit, Decimal("50.25"), "b")

    assert await service.recompute_balance(wallet.wallet_id) == Decimal("200.25")


@pytest.mark.asyncio
async def test_drifted_balance_is_detected(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)
    await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("10"), "a")

    await db.execute(update(Wallet).where(Wallet.wallet_id == wallet.wallet_id).values(balance=Decimal("999"), updated_at=utcnow()))
    await db.commit()

    with pytest.raises(InvariantViolation):
        await service.recompute_balance(wallet.wallet_id)


@pytest.mark.asyncio
async def test_withdraw_is_idempotent_per_reference(db, freelancer):
    service = WalletService(db)
    wallet = await service.get_or_create_user_wallet(freelancer.user_id)
    await service.post(wallet.wallet_id, WalletTransactionTypeEnum.credit, Decimal("100"), "seed")

    first = await service.withdraw(freelancer, Decimal("40"), "w-1")
    again = await service.withdraw(freelancer, Decimal("40"), "w-1")

    assert first.transaction_id == again.transaction_id
    assert first.amount == Decimal("-40.00")
    assert first.reference == "withdraw:w-1"
    assert Decimal(wallet.balance) == Decimal("60.00")

    with pytest.raises(Conflict):
        await service.withdraw(freelancer, Decimal("50"), "w-1")


@pytest.mark.asyncio
async def test_withdraw_without_wallet(db, freelancer):
    with pytest.raises(InsufficientFunds):
        await WalletService(db).withdraw(freelancer, Decimal("1"), "w-1")


@pytest.mark.asyncio
async def test_wallets_are_created_once(db, freelancer):
    service = WalletService(db)
    platform = await service.get_platform_wallet()
    assert platform.wallet_type == WalletTypeEnum.platform
    assert platform.user_id is None
    assert (await service.get_platform_wallet()).wallet_id == platform.wallet_id

    mine = await service.get_my_wallet(freelancer)
    assert (await service.get_or_create_user_wallet(freelancer.user_id)).wallet_id == mine.wallet_id
    assert mine.currency == "ETB"


@pytest.mark.asyncio
async def test_platform_wallet_is_a_single_row(db, monkeypatch):
    service = WalletService(db)
    platform = await service.get_platform_wallet()
    assert platform.wallet_id == PLATFORM_WALLET_ID
    db.expunge_all()

    # 另一個交易尚未看到已建立的平台錢包
    async def stale_lookup():
        return None
    monkeypatch.setattr(service.repo, "get_platform_wallet", stale_lookup)

    with pytest.raises(Conflict):
        await service.get_platform_wallet()

    result = await db.execute(
        select(func.count()).select_from(Wallet).where(Wallet.wallet_type == WalletTypeEnum.platform)
    )
    assert result.scalar_one() == 1
