import pytest

from conftest import CHANNEL_ID, GUILD_ID, MEMBER_ID, MODERATOR_ID, make_actor
from timecord.interactions.router import ComponentAction, parse_custom_id
from timecord.lifecycle.errors import AlreadyTerminal, EntryConflict, InvalidRequest
from timecord.presentation.views import (
    giveaway_end_id,
    giveaway_enter_id,
    poll_end_id,
    poll_vote_id,
    quarantine_remove_id,
)


@pytest.mark.parametrize(
    "custom_id, expected",
    [
        (poll_vote_id(3, 9), ComponentAction("poll", "vote", 3, 9)),
        (poll_end_id(3), ComponentAction("poll", "end", 3)),
        (giveaway_enter_id(4), ComponentAction("giveaway", "enter", 4)),
        (giveaway_end_id(4), ComponentAction("giveaway", "end", 4)),
        (quarantine_remove_id(5), ComponentAction("quarantine", "remove", 5)),
    ],
)
def test_parse_custom_id_accepts_every_button_the_views_build(custom_id, expected):
    assert parse_custom_id(custom_id) == expected


@pytest.mark.parametrize(
    "custom_id",
    [
        "",
        "other_bot:poll:vote:1:2",
        "timecord:poll:vote:1",
        "timecord:poll:vote:one:2",
        "timecord:poll:end:1:2",
        "timecord:giveaway:explode:1",
        "timecord:poll",
    ],
)
def test_parse_custom_id_rejects_foreign_and_malformed_ids(custom_id):
    assert parse_custom_id(custom_id) is None


async def _poll(runtime, **kwargs):
    return await runtime.polls.create_poll(
        GUILD_ID, CHANNEL_ID, make_actor(MODERATOR_ID), "Lunch?", ["Pizza", "Sushi"],
        duration_seconds=600, **kwargs
    )


@pytest.mark.asyncio
async def test_vote_buttons_report_what_happened(runtime):
    poll = await _poll(runtime)
    voter = make_actor(MEMBER_ID)
    pizza, sushi = poll.options

    recorded = await runtime.router.dispatch(poll_vote_id(poll.id, pizza.id), voter)
    changed = await runtime.router.dispatch(poll_vote_id(poll.id, sushi.id), voter)

    assert 'Your vote for "Pizza" has been recorded.' in recorded
    assert 'Your vote has been changed to "Sushi".' in changed


@pytest.mark.asyncio
async def test_multi_choice_button_removes_on_second_press(runtime):
    poll = await _poll(runtime, allow_multiple=True)
    voter = make_actor(MEMBER_ID)
    custom_id = poll_vote_id(poll.id, poll.options[0].id)

    await runtime.router.dispatch(custom_id, voter)
    removed = await runtime.router.dispatch(custom_id, voter)

    assert "has been removed" in removed


@pytest.mark.asyncio
async def test_end_poll_button_then_vote_is_refused(runtime):
    poll = await _poll(runtime)

    reply = await runtime.router.dispatch(poll_end_id(poll.id), make_actor(MODERATOR_ID))
    assert "ended" in reply

    with pytest.raises(AlreadyTerminal):
        await runtime.router.dispatch(poll_vote_id(poll.id, poll.options[0].id), make_actor(MEMBER_ID))


@pytest.mark.asyncio
async def test_giveaway_enter_button(runtime):
    giveaway = await runtime.giveaways.create_giveaway(
        GUILD_ID, CHANNEL_ID, make_actor(MODERATOR_ID), "Nitro", 3600
    )

    reply = await runtime.router.dispatch(giveaway_enter_id(giveaway.id), make_actor(MEMBER_ID))
    assert "(1 entry)" in reply

    with pytest.raises(EntryConflict):
        await runtime.router.dispatch(giveaway_enter_id(giveaway.id), make_actor(MEMBER_ID))

    reply = await runtime.router.dispatch(giveaway_end_id(giveaway.id), make_actor(MODERATOR_ID))
    assert "ended" in reply


@pytest.mark.asyncio
async def test_quarantine_remove_button(runtime, presenter):
    moderator = make_actor(MODERATOR_ID, privileged=True)
    await runtime.quarantine.setup_role(GUILD_ID, moderator)
    presenter.member_roles[(GUILD_ID, MEMBER_ID)] = []
    entry = await runtime.quarantine.quarantine(GUILD_ID, MEMBER_ID, moderator, duration_seconds=3600)

    reply = await runtime.router.dispatch(quarantine_remove_id(entry.id), moderator)

    assert "lifted" in reply
    assert await runtime.quarantine.status(GUILD_ID, MEMBER_ID) is None


@pytest.mark.asyncio
async def test_unknown_custom_id_is_rejected(runtime):
    with pytest.raises(InvalidRequest):
        await runtime.router.dispatch("timecord:poll:explode:1", make_actor(MEMBER_ID))
