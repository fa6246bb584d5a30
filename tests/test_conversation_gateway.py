import asyncio

import pytest
from sqlalchemy import select, func

from pairchat.core.database import Conversation
from pairchat.core.exceptions import InvalidOperationError, NotFoundError, ForbiddenError


@pytest.mark.asyncio
async def test_resolve_creates_once_and_is_symmetric(conversation_gateway, users):
    alice, bob, _ = users

    first = await conversation_gateway.resolve(alice.id, bob.id)
    assert first.created
    assert first.messages == []
    assert first.conversation.participant_ids == tuple(sorted((alice.id, bob.id)))
    assert not first.conversation.is_group

    second = await conversation_gateway.resolve(bob.id, alice.id)
    assert not second.created
    assert second.conversation.id == first.conversation.id


@pytest.mark.asyncio
async def test_concurrent_resolve_yields_a_single_conversation(conversation_gateway, db_manager, users):
    alice, bob, _ = users

    results = await asyncio.gather(
        conversation_gateway.resolve(alice.id, bob.id),
        conversation_gateway.resolve(bob.id, alice.id),
    )

    assert results[0].conversation.id == results[1].conversation.id
    assert sum(r.created for r in results) == 1

    async with db_manager.session() as session:
        count = (await session.execute(select(func.count(Conversation.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_resolve_rejects_self_and_unknown_users(conversation_gateway, users):
    alice, _, _ = users

    with pytest.raises(InvalidOperationError):
        await conversation_gateway.resolve(alice.id, alice.id)

    with pytest.raises(NotFoundError) as exc:
        await conversation_gateway.resolve(alice.id, 9999)
    assert exc.value.message == "Receiver not found"

    with pytest.raises(NotFoundError) as exc:
        await conversation_gateway.resolve(9999, alice.id)
    assert exc.value.message == "User not found"


@pytest.mark.asyncio
async def test_history_is_ordered_oldest_first(conversation_gateway, message_gateway, users):
    alice, bob, _ = users
    conversation_id = (await conversation_gateway.resolve(alice.id, bob.id)).conversation.id

    for sender, text in ((alice, "one"), (bob, "two"), (alice, "three")):
        await message_gateway.append(conversation_id, sender.id, text)

    history = await conversation_gateway.resolve(bob.id, alice.id)
    assert [m.content for m in history.messages] == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_clear_hides_history_for_the_clearing_user_only(conversation_gateway, message_gateway, users):
    alice, bob, _ = users
    conversation_id = (await conversation_gateway.resolve(alice.id, bob.id)).conversation.id

    await message_gateway.append(conversation_id, alice.id, "before")
    await conversation_gateway.clear(conversation_id, alice.id)

    assert (await conversation_gateway.resolve(alice.id, bob.id)).messages == []
    assert [m.content for m in (await conversation_gateway.resolve(bob.id, alice.id)).messages] == ["before"]

    await message_gateway.append(conversation_id, bob.id, "after")
    visible = (await conversation_gateway.resolve(alice.id, bob.id)).messages
    assert [m.content for m in visible] == ["after"]

    await conversation_gateway.clear(conversation_id, alice.id)
    assert (await conversation_gateway.resolve(alice.id, bob.id)).messages == []
    assert len((await conversation_gateway.resolve(bob.id, alice.id)).messages) == 2


@pytest.mark.asyncio
async def test_message_after_clear_and_delete_stays_visible(conversation_gateway, message_gateway, users):
    alice, bob, _ = users
    conversation_id = (await conversation_gateway.resolve(alice.id, bob.id)).conversation.id

    await message_gateway.append(conversation_id, alice.id, "old")
    newest = await message_gateway.append(conversation_id, alice.id, "to-delete")
    await conversation_gateway.clear(conversation_id, bob.id)

    await message_gateway.delete_by_id(newest.id, conversation_id, alice.id)
    fresh = await message_gateway.append(conversation_id, alice.id, "new after clear")

    assert fresh.id > newest.id
    visible = (await conversation_gateway.resolve(bob.id, alice.id)).messages
    assert [m.content for m in visible] == ["new after clear"]


@pytest.mark.asyncio
async def test_clear_an_empty_conversation(conversation_gateway, message_gateway, users):
    alice, bob, _ = users
    conversation_id = (await conversation_gateway.resolve(alice.id, bob.id)).conversation.id

    await conversation_gateway.clear(conversation_id, bob.id)
    await message_gateway.append(conversation_id, alice.id, "first")

    assert [m.content for m in (await conversation_gateway.resolve(bob.id, alice.id)).messages] == ["first"]


@pytest.mark.asyncio
async def test_clear_requires_membership(conversation_gateway, users):
    alice, bob, carol = users
    conversation_id = (await conversation_gateway.resolve(alice.id, bob.id)).conversation.id

    with pytest.raises(ForbiddenError):
        await conversation_gateway.clear(conversation_id, carol.id)

    with pytest.raises(NotFoundError):
        await conversation_gateway.clear(9999, alice.id)


@pytest.mark.asyncio
async def test_get_conversation(conversation_gateway, users):
    alice, bob, carol = users
    conversation = (await conversation_gateway.resolve(alice.id, bob.id)).conversation

    loaded = await conversation_gateway.get_conversation(conversation.id)
    assert loaded.has_participant(alice.id)
    assert not loaded.has_participant(carol.id)
    assert loaded.counterparty_of(alice.id) == bob.id
    assert loaded.counterparty_of(bob.id) == alice.id

    assert await conversation_gateway.get_conversation(9999) is None
