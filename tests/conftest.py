import random
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import cardshop.core.db  # noqa: F401  (registers every table on SQLModel.metadata)
from cardshop.core.enums import CardRarity, ProductType
from cardshop.core.locks import UserLockRegistry
from cardshop.engine.composer import RandomFactory
from cardshop.models.box import Box
from cardshop.models.card import Card
from cardshop.models.card_set import CardSet
from cardshop.models.pack import Pack
from cardshop.models.user import User
from cardshop.services.card_set import CardSetService
from cardshop.services.ledger import LedgerService
from cardshop.services.opening import OpeningService
from cardshop.services.pricing import PricingService
from cardshop.services.stock import StockService

# (name, rarity, is_holo, price)
BASE_SET_CARDS = [
    ("Sproutling", CardRarity.COMMON, False, 10),
    ("Pebble Crab", CardRarity.COMMON, False, 10),
    ("Mossbat", CardRarity.COMMON, False, 12),
    ("Ember Pup", CardRarity.COMMON, False, 12),
    ("Drizzle Newt", CardRarity.COMMON, False, 15),
    ("Shiny Sproutling", CardRarity.COMMON, True, 40),
    ("Thornback", CardRarity.UNCOMMON, False, 25),
    ("Gale Finch", CardRarity.UNCOMMON, False, 25),
    ("Cinder Fox", CardRarity.UNCOMMON, False, 30),
    ("Tidecaller", CardRarity.RARE, False, 100),
    ("Stormhorn", CardRarity.RARE, False, 110),
    ("Holo Stormhorn", CardRarity.RARE, True, 180),
    ("Magma Wyrm", CardRarity.EPIC, False, 250),
    ("Holo Magma Wyrm", CardRarity.EPIC, True, 400),
    ("Aurora Sovereign", CardRarity.LEGENDARY, True, 1000),
]

BASE_SET_WEIGHTS = {
    CardRarity.COMMON: 60.0,
    CardRarity.UNCOMMON: 25.0,
    CardRarity.RARE: 10.0,
    CardRarity.EPIC: 4.0,
    CardRarity.LEGENDARY: 1.0,
}

PACK_STOCK = 1000
BOX_STOCK = 50


@dataclass
class Catalog:
    user: User
    card_set: CardSet
    cards: list[Card]
    pack: Pack
    box: Box


def seeded_rng_factory(seed: int) -> RandomFactory:
    master = random.Random(seed)
    return lambda: random.Random(master.getrandbits(64))


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'cardshop.db'}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=20,
        max_overflow=120,
        connect_args={"timeout": 60},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks() -> UserLockRegistry:
    return UserLockRegistry(timeout=60)


@pytest.fixture
def make_opening_service(
    locks: UserLockRegistry,
) -> Callable[..., OpeningService]:
    def factory(session: AsyncSession, *, seed: int | None = None) -> OpeningService:
        service = OpeningService(
            db=session,
            card_set_service=CardSetService(session),
            pricing_service=PricingService(session),
            stock_service=StockService(session),
            ledger_service=LedgerService(session, locks),
        )
        if seed is not None:
            service.rng_factory = seeded_rng_factory(seed)
        return service

    return factory


async def create_user(session: AsyncSession, username: str) -> User:
    user = User(username=username)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def catalog(session: AsyncSession) -> Catalog:
    """An active 15-card set with a 10-card pack (2 rares, 1 holo) and a 6-pack box."""
    user = await create_user(session, "ash")

    card_set = CardSet(name="Base Set", symbol="BS")
    session.add(card_set)
    await session.commit()
    await session.refresh(card_set)

    cards = [
        Card(
            card_set_id=card_set.id,
            name=name,
            card_number=f"{number}/{len(BASE_SET_CARDS)}",
            rarity=rarity,
            is_holo=is_holo,
            price=price,
        )
        for number, (name, rarity, is_holo, price) in enumerate(BASE_SET_CARDS, start=1)
    ]
    session.add_all(cards)

    pack = Pack(
        name="Base Set Booster",
        card_set_id=card_set.id,
        cards_per_pack=10,
        guaranteed_rares=2,
        guaranteed_holos=1,
        price=499,
    )
    session.add(pack)
    await session.commit()
    await session.refresh(pack)

    box = Box(
        name="Base Set Booster Box",
        card_set_id=card_set.id,
        pack_id=pack.id,
        packs_per_box=6,
        price_per_box=2499,
    )
    session.add(box)
    await session.commit()
    await session.refresh(box)

    card_set_service = CardSetService(session)
    await card_set_service.set_weights(card_set.id, BASE_SET_WEIGHTS)
    card_set = await card_set_service.activate_card_set(card_set.id)

    stock_service = StockService(session)
    await stock_service.set_stock(ProductType.PACK, pack.id, PACK_STOCK)
    await stock_service.set_stock(ProductType.BOX, box.id, BOX_STOCK)

    return Catalog(user=user, card_set=card_set, cards=cards, pack=pack, box=box)
