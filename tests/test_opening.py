import asyncio
from collections.abc import Callable

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.enums import CardRarity, ProductType, ReservationStatus
from cardshop.core.exceptions import (
    ConflictError,
    InsufficientPoolError,
    InternalServerError,
    NotFoundError,
    ValidationError,
)
from cardshop.core.locks import UserLockRegistry
from cardshop.models.card import Card
from cardshop.models.card_set import CardSet
from cardshop.models.opening import BoxOpeningResult, OpeningRequest, PackOpeningResult
from cardshop.models.pack import Pack
from cardshop.models.stock import StockReservation
from cardshop.models.transaction import Transaction
from cardshop.services.card_set import CardSetService
from cardshop.services.inventory import InventoryService
from cardshop.services.opening import OpeningService
from cardshop.services.stock import StockService
from tests.conftest import BOX_STOCK, PACK_STOCK, Catalog, create_user

OpeningFactory = Callable[..., OpeningService]
Sessions = async_sessionmaker[AsyncSession]


async def count(session: AsyncSession, model) -> int:
    result = await session.exec(select(func.count()).select_from(model))
    return result.one()


async def stock_left(session_factory: Sessions, product_type: ProductType, product_id: int) -> int:
    async with session_factory() as check:
        stock = await StockService(check).get_stock(product_type, product_id)
        assert stock is not None
        return stock.quantity


async def check_inventory(session_factory: Sessions, user_id: int):
    """Assert the cached totals equal the sums over the items and return the view."""
    async with session_factory() as check:
        view = await InventoryService(check).get_inventory(user_id)
    assert view.total_cards == sum(item.quantity for item in view.items)
    assert view.total_value == sum(item.quantity * item.unit_value for item in view.items)
    return view


class TestOpenPack:
    async def test_pack_contents(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            result = await make_opening_service(session, seed=1).open_pack(
                catalog.user.id, catalog.pack.id, "pack-1"
            )

        assert len(result.cards_obtained) == 10
        assert sum(card.rarity.is_at_least(CardRarity.RARE) for card in result.cards_obtained) >= 2
        assert any(card.is_holo for card in result.cards_obtained)
        assert result.total_value == sum(card.value for card in result.cards_obtained)
        assert sum(result.rarity_breakdown.values()) == 10
        prices = {card.id: card.price for card in catalog.cards}
        assert all(card.value == prices[card.card_id] for card in result.cards_obtained)

        view = await check_inventory(session_factory, catalog.user.id)
        assert view.total_cards == 10
        assert view.total_value == result.total_value
        assert await stock_left(session_factory, ProductType.PACK, catalog.pack.id) == PACK_STOCK - 1

    async def test_replay_returns_identical_result(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            first = await make_opening_service(session, seed=1).open_pack(
                catalog.user.id, catalog.pack.id, "pack-1"
            )
        async with session_factory() as session:
            second = await make_opening_service(session, seed=2).open_pack(
                catalog.user.id, catalog.pack.id, "pack-1"
            )

        assert second.model_dump() == first.model_dump()
        view = await check_inventory(session_factory, catalog.user.id)
        assert view.total_cards == 10
        assert await stock_left(session_factory, ProductType.PACK, catalog.pack.id) == PACK_STOCK - 1
        async with session_factory() as check:
            assert await count(check, Transaction) == 1

    async def test_replay_in_same_session(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            service = make_opening_service(session)
            first = await service.open_pack(catalog.user.id, catalog.pack.id, "pack-1")
            second = await service.open_pack(catalog.user.id, catalog.pack.id, "pack-1")

        assert second == first

    async def test_distinct_requests_are_distinct_openings(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            service = make_opening_service(session)
            first = await service.open_pack(catalog.user.id, catalog.pack.id, "pack-1")
            second = await service.open_pack(catalog.user.id, catalog.pack.id, "pack-2")

        assert first.transaction_id != second.transaction_id
        view = await check_inventory(session_factory, catalog.user.id)
        assert view.total_cards == 20
        assert view.total_value == first.total_value + second.total_value


class TestOpenBox:
    async def test_box_contents(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            result = await make_opening_service(session, seed=3).open_box(
                catalog.user.id, catalog.box.id, "box-1"
            )

        assert len(result.packs_opened) == 6
        assert result.total_cards_obtained == 60
        assert result.total_value == sum(pack.total_value for pack in result.packs_opened)
        assert {pack.transaction_id for pack in result.packs_opened} == {result.transaction_id}
        for pack in result.packs_opened:
            assert len(pack.cards_obtained) == 10
            assert sum(c.rarity.is_at_least(CardRarity.RARE) for c in pack.cards_obtained) >= 2

        view = await check_inventory(session_factory, catalog.user.id)
        assert view.total_cards == 60
        assert view.total_value == result.total_value
        assert await stock_left(session_factory, ProductType.BOX, catalog.box.id) == BOX_STOCK - 1
        # Packs inside a box don't come out of pack stock.
        assert await stock_left(session_factory, ProductType.PACK, catalog.pack.id) == PACK_STOCK
        async with session_factory() as check:
            assert await count(check, Transaction) == 1
            assert await count(check, BoxOpeningResult) == 1
            assert await count(check, PackOpeningResult) == 6

    async def test_box_replay(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            service = make_opening_service(session)
            first = await service.open_box(catalog.user.id, catalog.box.id, "box-1")
        async with session_factory() as session:
            service = make_opening_service(session)
            second = await service.open_box(catalog.user.id, catalog.box.id, "box-1")

        assert second.model_dump() == first.model_dump()
        view = await check_inventory(session_factory, catalog.user.id)
        assert view.total_cards == 60

    async def test_unknown_box(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await make_opening_service(session).open_box(catalog.user.id, 9999, "box-1")

        assert exc_info.value.details["resource"] == "box"


class TestConcurrency:
    async def test_concurrent_openings_for_one_user(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        user_id, pack_id = catalog.user.id, catalog.pack.id
        openings = 100

        async def open_one(n: int):
            async with session_factory() as session:
                return await make_opening_service(session).open_pack(user_id, pack_id, f"req-{n}")

        results = await asyncio.gather(*(open_one(n) for n in range(openings)))

        view = await check_inventory(session_factory, user_id)
        assert view.total_cards == 10 * openings
        assert view.total_value == sum(result.total_value for result in results)
        assert await stock_left(session_factory, ProductType.PACK, pack_id) == PACK_STOCK - openings
        async with session_factory() as check:
            assert await count(check, Transaction) == openings
            assert await count(check, OpeningRequest) == openings

    async def test_concurrent_retries_apply_once(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        user_id, pack_id = catalog.user.id, catalog.pack.id

        async def open_same():
            async with session_factory() as session:
                return await make_opening_service(session).open_pack(user_id, pack_id, "retry-me")

        results = await asyncio.gather(*(open_same() for _ in range(10)))

        assert all(result.model_dump() == results[0].model_dump() for result in results)
        view = await check_inventory(session_factory, user_id)
        assert view.total_cards == 10
        # Every losing retry handed its reservation back.
        assert await stock_left(session_factory, ProductType.PACK, pack_id) == PACK_STOCK - 1
        async with session_factory() as check:
            assert await count(check, Transaction) == 1
            reserved = await check.exec(
                select(func.count())
                .select_from(StockReservation)
                .where(col(StockReservation.status) == ReservationStatus.RESERVED)
            )
            assert reserved.one() == 0

    async def test_different_users_in_parallel(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            users = [await create_user(session, f"trainer-{n}") for n in range(5)]
            user_ids = [user.id for user in users]
        pack_id = catalog.pack.id

        async def open_for(user_id: int, n: int):
            async with session_factory() as session:
                return await make_opening_service(session).open_pack(user_id, pack_id, f"{user_id}-{n}")

        await asyncio.gather(*(open_for(user_id, n) for user_id in user_ids for n in range(4)))

        for user_id in user_ids:
            view = await check_inventory(session_factory, user_id)
            assert view.total_cards == 40


class TestFailures:
    async def test_out_of_stock(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            await StockService(session).set_stock(ProductType.PACK, catalog.pack.id, 0)
            with pytest.raises(ConflictError) as exc_info:
                await make_opening_service(session).open_pack(
                    catalog.user.id, catalog.pack.id, "pack-1"
                )

        assert exc_info.value.retryable
        async with session_factory() as check:
            assert await count(check, Transaction) == 0
            assert await count(check, StockReservation) == 0

    async def test_unknown_user_takes_no_stock(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await make_opening_service(session).open_pack(9999, catalog.pack.id, "pack-1")

        assert await stock_left(session_factory, ProductType.PACK, catalog.pack.id) == PACK_STOCK

    async def test_unknown_pack(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await make_opening_service(session).open_pack(catalog.user.id, 9999, "pack-1")

        assert exc_info.value.details == {"resource": "pack", "identifier": "9999"}

    async def test_unavailable_pack(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            pack = (await session.exec(select(Pack).where(Pack.id == catalog.pack.id))).one()
            pack.is_available = False
            session.add(pack)
            await session.commit()

            with pytest.raises(ConflictError) as exc_info:
                await make_opening_service(session).open_pack(
                    catalog.user.id, catalog.pack.id, "pack-1"
                )

        assert not exc_info.value.retryable

    async def test_inactive_card_set(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            draft = CardSet(name="Jungle", symbol="JU")
            session.add(draft)
            await session.commit()
            session.add(Card(card_set_id=draft.id, name="Vine", rarity=CardRarity.COMMON, price=5))
            pack = Pack(name="Jungle Booster", card_set_id=draft.id, cards_per_pack=5, price=299)
            session.add(pack)
            await session.commit()
            pack_id = pack.id
            await StockService(session).set_stock(ProductType.PACK, pack_id, 10)

            with pytest.raises(ValidationError):
                await make_opening_service(session).open_pack(catalog.user.id, pack_id, "pack-1")

        assert await stock_left(session_factory, ProductType.PACK, pack_id) == 10

    async def test_request_id_reused_for_other_product(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            service = make_opening_service(session)
            await service.open_pack(catalog.user.id, catalog.pack.id, "shared")
            with pytest.raises(ConflictError) as exc_info:
                await service.open_box(catalog.user.id, catalog.box.id, "shared")

        assert not exc_info.value.retryable
        assert await stock_left(session_factory, ProductType.BOX, catalog.box.id) == BOX_STOCK

    async def test_failure_after_reservation_releases_stock(
        self,
        catalog: Catalog,
        session_factory: Sessions,
        make_opening_service: OpeningFactory,
        monkeypatch: pytest.MonkeyPatch,
    ):
        user_id, pack_id = catalog.user.id, catalog.pack.id

        async with session_factory() as session:
            service = make_opening_service(session)

            async def failing_apply(*_args, **_kwargs):
                raise InternalServerError("Failed to record the opening")

            monkeypatch.setattr(service.ledger_service, "apply", failing_apply)
            with pytest.raises(InternalServerError):
                await service.open_pack(user_id, pack_id, "pack-1")

        assert await stock_left(session_factory, ProductType.PACK, pack_id) == PACK_STOCK
        async with session_factory() as check:
            reservation = (await check.exec(select(StockReservation))).one()
            assert reservation.status == ReservationStatus.RELEASED
            assert await count(check, Transaction) == 0

        # The same request id can be retried afterwards.
        async with session_factory() as session:
            result = await make_opening_service(session).open_pack(user_id, pack_id, "pack-1")
        assert len(result.cards_obtained) == 10

    async def test_cancellation_releases_stock(
        self,
        catalog: Catalog,
        session_factory: Sessions,
        make_opening_service: OpeningFactory,
        monkeypatch: pytest.MonkeyPatch,
    ):
        user_id, pack_id = catalog.user.id, catalog.pack.id
        applying = asyncio.Event()

        async with session_factory() as session:
            service = make_opening_service(session)

            async def slow_apply(*_args, **_kwargs):
                applying.set()
                await asyncio.sleep(60)

            monkeypatch.setattr(service.ledger_service, "apply", slow_apply)
            task = asyncio.create_task(service.open_pack(user_id, pack_id, "pack-1"))
            await applying.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert await stock_left(session_factory, ProductType.PACK, pack_id) == PACK_STOCK
        async with session_factory() as check:
            assert await count(check, Transaction) == 0
            assert await count(check, OpeningRequest) == 0

    async def test_lock_timeout(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        user_id, pack_id = catalog.user.id, catalog.pack.id
        locks = UserLockRegistry(timeout=0.05)

        async with session_factory() as session:
            service = make_opening_service(session)
            service.ledger_service.locks = locks
            async with locks.hold(user_id):
                with pytest.raises(ConflictError) as exc_info:
                    await service.open_pack(user_id, pack_id, "pack-1")

        assert exc_info.value.retryable
        assert exc_info.value.details["conflict_field"] == "user_id"
        assert await stock_left(session_factory, ProductType.PACK, pack_id) == PACK_STOCK


class TestNonRepeatingSet:
    async def test_insufficient_pool(
        self, catalog: Catalog, session_factory: Sessions, make_opening_service: OpeningFactory
    ):
        async with session_factory() as session:
            card_set = CardSet(name="Promo", symbol="PR", non_repeating=True)
            session.add(card_set)
            await session.commit()
            card_set_id = card_set.id
            session.add_all(
                [
                    Card(card_set_id=card_set_id, name="Promo A", rarity=CardRarity.COMMON, price=5),
                    Card(card_set_id=card_set_id, name="Promo B", rarity=CardRarity.RARE, price=50),
                ]
            )
            session.add(
                Pack(
                    name="Promo Pack",
                    card_set_id=card_set_id,
                    cards_per_pack=3,
                    guaranteed_rares=2,
                    price=199,
                )
            )
            await session.commit()
            card_set_service = CardSetService(session)
            await card_set_service.set_weights(card_set_id, {CardRarity.COMMON: 1})

            with pytest.raises(InsufficientPoolError):
                await card_set_service.activate_card_set(card_set_id)

            assert not (await card_set_service.require_card_set(card_set_id)).is_active


class TestCardSetActivation:
    async def test_weights_frozen_after_activation(self, catalog: Catalog, session: AsyncSession):
        with pytest.raises(ValidationError):
            await CardSetService(session).set_weights(catalog.card_set.id, {CardRarity.COMMON: 1})

    async def test_activation_is_idempotent(self, catalog: Catalog, session: AsyncSession):
        card_set = await CardSetService(session).activate_card_set(catalog.card_set.id)
        assert card_set.is_active

    async def test_rejects_weighted_rarity_without_cards(self, session: AsyncSession):
        card_set = CardSet(name="Fossil", symbol="FO")
        session.add(card_set)
        await session.commit()
        card_set_id = card_set.id
        session.add(Card(card_set_id=card_set_id, name="Amber", rarity=CardRarity.COMMON, price=5))
        await session.commit()
        service = CardSetService(session)
        await service.set_weights(card_set_id, {CardRarity.COMMON: 9, CardRarity.MYTHIC: 1})

        with pytest.raises(ValidationError) as exc_info:
            await service.activate_card_set(card_set_id)

        assert "mythic" in exc_info.value.details["errors"]
