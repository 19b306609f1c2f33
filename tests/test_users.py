import pytest

from sticker_core.constants import ROLE_GUEST, ROLE_USER
from sticker_core.errors import NotFoundError, ValidationError


@pytest.mark.asyncio
async def test_create_user_provisions_wallet(core):
    user_id = await core.users.create_user("Mia", ROLE_USER, "0420")

    user = await core.users.get_user_by_id(user_id)
    assert user["name"] == "Mia"
    assert user["code"] == "0420"
    assert user["is_active"] == 1
    assert user["email"] == ""

    wallet = await core.wallets.get_wallet(user_id)
    assert (wallet["assets"], wallet["credit"]) == (5, 100)
    assert f"transactions_{user_id}" in await core.ledger.dump_ledgers()


@pytest.mark.asyncio
async def test_guest_users_get_no_wallet(core):
    user_id = await core.users.create_user("Guest", ROLE_GUEST, "0000")
    assert await core.wallets.get_wallet(user_id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["123", "12345", "abcd", "12 4", ""])
async def test_invalid_codes_are_rejected(core, code):
    with pytest.raises(ValidationError, match="Code must be a 4-digit number"):
        await core.users.create_user("Mia", ROLE_USER, code)

    assert await core.users.get_user_by_name("Mia") is None


@pytest.mark.asyncio
async def test_code_update_and_verification(core, user_factory):
    user_id = await user_factory("Leo")

    assert await core.users.verify_user_code(user_id, "1234")
    await core.users.update_user_code(user_id, "9876")
    assert await core.users.verify_user_code(user_id, "9876")
    assert not await core.users.verify_user_code(user_id, "1234")
    assert not await core.users.verify_user_code(999, "9876")

    with pytest.raises(ValidationError):
        await core.users.reset_user_code(user_id, "98")


@pytest.mark.asyncio
async def test_admin_requires_code_setup_until_changed(core):
    assert await core.users.admin_requires_code_setup()

    admin = await core.users.get_user_by_name("Admin")
    await core.users.reset_user_code(admin["id"], "2468")

    assert not await core.users.admin_requires_code_setup()


@pytest.mark.asyncio
async def test_contact_and_icon_updates(core, user_factory):
    user_id = await user_factory("Ana")
    before = await core.users.get_user_by_id(user_id)

    await core.users.update_user_contact(user_id, "ana@example.com", "555-0100")
    await core.users.update_user_icon(user_id, "icons/ana.jpg")

    user = await core.users.get_user_by_id(user_id)
    assert user["email"] == "ana@example.com"
    assert user["phone"] == "555-0100"
    assert user["icon"] == "icons/ana.jpg"
    assert user["updated_at"] >= before["updated_at"]

    with pytest.raises(NotFoundError):
        await core.users.update_user_icon(999, "icons/x.jpg")


@pytest.mark.asyncio
async def test_delete_user_removes_wallet_and_ledger(core, user_factory):
    user_id = await user_factory("Tom")
    other_id = await user_factory("Sam")
    await core.wallets.move_assets(user_id, 1, "Gift", other_id)
    await core.wallets.move_assets(other_id, -1, "Gift", user_id)

    await core.users.delete_user(user_id)

    assert await core.users.get_user_by_id(user_id) is None
    assert await core.wallets.get_wallet(user_id) is None
    assert await core.ledger.count_entries(user_id) == 0

    entries = await core.ledger.fetch_entries(other_id)
    assert entries[0]["counterparty"] is None

    with pytest.raises(NotFoundError):
        await core.users.delete_user(user_id)


@pytest.mark.asyncio
async def test_has_event_type_owner(core, user_factory, event_type_factory):
    user_id = await user_factory()
    assert not await core.users.has_event_type_owner(user_id)

    await event_type_factory("Homework", owner=user_id)
    assert await core.users.has_event_type_owner(user_id)


@pytest.mark.asyncio
async def test_roles_and_version(core):
    roles = await core.users.get_roles()
    assert [row["role_name"] for row in roles] == ["Admin", "Guest", "User"]
    assert await core.users.get_db_version() == 12
