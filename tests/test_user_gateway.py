import pytest

from pairchat.core.exceptions import InternalError


@pytest.mark.asyncio
async def test_lookup_by_id_and_email(user_gateway, users):
    alice, _, _ = users

    assert (await user_gateway.get_user_by_id(alice.id)).email == "alice@example.com"
    assert (await user_gateway.get_user_by_email("alice@example.com")).id == alice.id
    assert await user_gateway.get_user_by_id(9999) is None
    assert await user_gateway.get_user_by_email("nobody@example.com") is None


@pytest.mark.asyncio
async def test_duplicate_email_is_an_internal_error(user_gateway, users):
    with pytest.raises(InternalError):
        await user_gateway.create_user("alice2", "alice@example.com")


@pytest.mark.asyncio
async def test_set_online(user_gateway, users):
    alice, _, _ = users

    assert await user_gateway.set_online(alice.id, True)
    assert (await user_gateway.get_user_by_id(alice.id)).is_online is True

    assert await user_gateway.set_online(alice.id, False)
    assert (await user_gateway.get_user_by_id(alice.id)).is_online is False

    assert not await user_gateway.set_online(9999, True)


@pytest.mark.asyncio
async def test_contacts(user_gateway, users):
    alice, bob, carol = users

    assert await user_gateway.add_contact(alice.id, bob.id)
    assert await user_gateway.add_contact(alice.id, carol.id)
    assert not await user_gateway.add_contact(alice.id, bob.id)

    assert await user_gateway.has_contact(alice.id, bob.id)
    assert not await user_gateway.has_contact(bob.id, alice.id)

    contacts = await user_gateway.get_contacts(alice.id)
    assert [c.id for c in contacts] == [bob.id, carol.id]
    assert not any(c.is_blocked for c in contacts)

    assert await user_gateway.delete_contact(alice.id, bob.id)
    assert not await user_gateway.delete_contact(alice.id, bob.id)
    assert [c.id for c in await user_gateway.get_contacts(alice.id)] == [carol.id]


@pytest.mark.asyncio
async def test_blocks_apply_in_both_directions(user_gateway, users):
    alice, bob, carol = users

    assert await user_gateway.block_user(alice.id, bob.id)
    assert not await user_gateway.block_user(alice.id, bob.id)

    assert await user_gateway.is_blocked_between(alice.id, bob.id)
    assert await user_gateway.is_blocked_between(bob.id, alice.id)
    assert not await user_gateway.is_blocked_between(alice.id, carol.id)
    assert await user_gateway.get_blocked_ids(alice.id) == [bob.id]
    assert await user_gateway.get_blocked_ids(bob.id) == []

    await user_gateway.add_contact(alice.id, bob.id)
    contacts = await user_gateway.get_contacts(alice.id)
    assert contacts[0].is_blocked

    assert await user_gateway.unblock_user(alice.id, bob.id)
    assert not await user_gateway.unblock_user(alice.id, bob.id)
    assert not await user_gateway.is_blocked_between(alice.id, bob.id)
