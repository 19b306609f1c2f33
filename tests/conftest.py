import pytest
import pytest_asyncio

from sticker_core.constants import ROLE_USER
from sticker_core.core import StickerCore
from sticker_core.database import Database

ADMIN_ID = 1
GUEST_ID = 2


@pytest_asyncio.fixture
async def core():
    sticker_core = StickerCore(Database(":memory:"))
    await sticker_core.initialize()

    yield sticker_core
    await sticker_core.close()


@pytest_asyncio.fixture
async def db(core: StickerCore) -> Database:
    return core.db


@pytest_asyncio.fixture
async def user_factory(core: StickerCore):
    counter = {"n": 0}

    async def _factory(name: str | None = None, *, assets: int | None = None, code: str = "1234") -> int:
        counter["n"] += 1
        user_id = await core.users.create_user(name or f"User{counter['n']}", ROLE_USER, code)
        if assets is not None:
            wallet = await core.wallets.get_wallet(user_id)
            await core.wallets.update_wallet(user_id, assets, wallet["credit"])
        return user_id

    return _factory


@pytest_asyncio.fixture
async def event_type_factory(core: StickerCore):
    async def _factory(name: str = "Dishes", *, owner: int | None = None, **overrides) -> tuple[str, int | None]:
        payload = {
            "icon": "star",
            "icon_color": "#ffaa00",
            "availability": 0,
            "weight": 1,
        }
        payload.update(overrides)
        await core.events.insert_event_type(name, owner=owner, **payload)
        return name, owner

    return _factory


@pytest_asyncio.fixture
async def product_factory(core: StickerCore):
    async def _factory(creator: int, **overrides) -> int:
        payload = {
            "name": "Kite",
            "price": 10,
            "description": "A red kite",
            "images": None,
            "online": True,
            "quantity": 2,
        }
        payload.update(overrides)
        return await core.products.create_product(creator=creator, **payload)

    return _factory


@pytest_asyncio.fixture
async def event_factory(core: StickerCore):
    async def _factory(event_type: str, owner: int | None, created_by: int, date: str = "2024-05-01") -> int:
        return await core.events.insert_event(
            date, f"{date}T08:00:00.000Z", event_type, owner, created_by
        )

    return _factory
