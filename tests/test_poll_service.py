import asyncio

import pytest

from conftest import CHANNEL_ID, GUILD_ID, MEMBER_ID, MODERATOR_ID, OTHER_MEMBER_ID, make_actor
from timecord.datatypes.entity_datatypes import Poll, PollOption
from timecord.datatypes.lifecycle_datatypes import VoteResult
from timecord.lifecycle.effects.poll_effect import build_results
from timecord.lifecycle.errors import AlreadyTerminal, EntityNotFound, Forbidden, InvalidRequest, UpstreamUnavailable


async def _create(runtime, options=("Pizza", "Sushi", "Tacos"), **kwargs):
    kwargs.setdefault("duration_seconds", 600)
    return await runtime.polls.create_poll(
        GUILD_ID, CHANNEL_ID, make_actor(MODERATOR_ID), "Lunch?", list(options), **kwargs
    )


def _latest_message(presenter, poll):
    return presenter.messages[poll.render_ref]


# ==========================================
# Creation
# ==========================================

@pytest.mark.asyncio
async def test_create_poll_stores_options_with_emojis(runtime, settings, clock):
    poll = await _create(runtime)

    assert poll.active is True
    assert poll.deadline == clock() + 600
    assert [o.text for o in poll.options] == ["Pizza", "Sushi", "Tacos"]
    assert [o.emoji for o in poll.options] == list(settings.poll.vote_emojis[:3])
    assert poll.render_ref is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "question, options, duration",
    [
        ("   ", ["A", "B"], 600),
        ("Q?", ["Only one"], 600),
        ("Q?", [str(i) for i in range(11)], 600),
        ("Q?", ["Same", "same"], 600),
        ("Q?", ["A", "B"], 60),
        ("Q?", ["A", "B"], 8 * 24 * 60 * 60),
        ("x" * 257, ["A", "B"], 600),
        ("Q?", ["A", "B" * 101], 600),
    ],
)
async def test_create_poll_rejects_invalid_arguments(runtime, presenter, question, options, duration):
    with pytest.raises(InvalidRequest):
        await runtime.polls.create_poll(
            GUILD_ID, CHANNEL_ID, make_actor(), question, options, duration_seconds=duration
        )
    assert presenter.messages == {}


@pytest.mark.asyncio
async def test_blank_options_are_dropped_before_counting(runtime):
    poll = await _create(runtime, options=("A", "  ", "", "B"))

    assert [o.text for o in poll.options] == ["A", "B"]


@pytest.mark.asyncio
async def test_render_failure_at_creation_keeps_nothing(runtime, presenter):
    presenter.fail_render = True

    with pytest.raises(UpstreamUnavailable):
        await _create(runtime)

    assert await runtime.polls.list_active(GUILD_ID) == []
    assert len(runtime.poll_engine.timers) == 0


@pytest.mark.asyncio
async def test_create_reports_a_row_that_vanished_after_insert(runtime, presenter, monkeypatch):
    async def missing(conn, entity_id):
        return None

    monkeypatch.setattr(runtime.polls.repo, "fetch", missing)

    with pytest.raises(EntityNotFound):
        await _create(runtime)
    assert presenter.messages == {}


# ==========================================
# Voting
# ==========================================

@pytest.mark.asyncio
async def test_single_choice_vote_add_change_and_revote(runtime):
    poll = await _create(runtime)
    voter = make_actor(MEMBER_ID)
    pizza, sushi = poll.options[0].id, poll.options[1].id

    assert await runtime.polls.vote(poll.id, voter, pizza) is VoteResult.ADDED
    assert await runtime.polls.vote(poll.id, voter, sushi) is VoteResult.CHANGED
    assert await runtime.polls.vote(poll.id, voter, sushi) is VoteResult.ADDED

    assert await runtime.polls.user_votes(poll.id, MEMBER_ID) == [sushi]
    results = await runtime.polls.tally(poll)
    assert results.total_votes == 1
    assert results.participants == 1


@pytest.mark.asyncio
async def test_multi_choice_vote_toggles_each_option(runtime):
    poll = await _create(runtime, allow_multiple=True)
    voter = make_actor(MEMBER_ID)
    pizza, sushi = poll.options[0].id, poll.options[1].id

    assert await runtime.polls.vote(poll.id, voter, pizza) is VoteResult.ADDED
    assert await runtime.polls.vote(poll.id, voter, sushi) is VoteResult.ADDED
    assert sorted(await runtime.polls.user_votes(poll.id, MEMBER_ID)) == sorted([pizza, sushi])

    assert await runtime.polls.vote(poll.id, voter, pizza) is VoteResult.REMOVED
    assert await runtime.polls.user_votes(poll.id, MEMBER_ID) == [sushi]

    results = await runtime.polls.tally(poll)
    assert results.total_votes == 1
    assert results.participants == 1


@pytest.mark.asyncio
async def test_vote_rejects_unknown_option_and_foreign_guild(runtime):
    poll = await _create(runtime)

    with pytest.raises(InvalidRequest):
        await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), 999_999)
    with pytest.raises(EntityNotFound):
        await runtime.polls.vote(poll.id, make_actor(MEMBER_ID, guild_id=GUILD_ID + 1), poll.options[0].id)
    with pytest.raises(EntityNotFound):
        await runtime.polls.vote(424242, make_actor(MEMBER_ID), 1)


@pytest.mark.asyncio
async def test_vote_on_ended_poll_is_refused(runtime):
    poll = await _create(runtime)
    await runtime.polls.end_poll(poll.id, make_actor(MODERATOR_ID))

    with pytest.raises(AlreadyTerminal):
        await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[0].id)

    assert await runtime.polls.participants(poll.id) == []


@pytest.mark.asyncio
async def test_vote_after_deadline_expires_poll_and_is_refused(runtime, clock):
    poll = await _create(runtime)
    clock.advance(601)

    with pytest.raises(AlreadyTerminal):
        await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[0].id)

    stored = await runtime.polls.get_poll(poll.id)
    assert stored.active is False
    assert stored.ended_by is None


@pytest.mark.asyncio
async def test_concurrent_votes_from_many_users_are_all_counted(runtime):
    poll = await _create(runtime)
    option_ids = [o.id for o in poll.options]

    await asyncio.gather(*(
        runtime.polls.vote(poll.id, make_actor(MEMBER_ID + i), option_ids[i % len(option_ids)])
        for i in range(12)
    ))

    results = await runtime.polls.tally(poll)
    assert results.total_votes == 12
    assert results.participants == 12
    assert [t.votes for t in results.tallies] == [4, 4, 4]


@pytest.mark.asyncio
async def test_rapid_clicks_by_one_user_leave_a_single_ballot(runtime):
    poll = await _create(runtime)
    voter = make_actor(MEMBER_ID)
    option_ids = [o.id for o in poll.options]

    await asyncio.gather(*(runtime.polls.vote(poll.id, voter, option_ids[i % 3]) for i in range(9)))

    assert len(await runtime.polls.user_votes(poll.id, MEMBER_ID)) == 1


# ==========================================
# Ending and rendering
# ==========================================

@pytest.mark.asyncio
async def test_end_poll_requires_creator_or_privilege(runtime):
    poll = await _create(runtime)

    with pytest.raises(Forbidden):
        await runtime.polls.end_poll(poll.id, make_actor(OTHER_MEMBER_ID))

    await runtime.polls.end_poll(poll.id, make_actor(MODERATOR_ID))
    assert (await runtime.polls.get_poll(poll.id)).active is False


@pytest.mark.asyncio
async def test_rendered_poll_shows_counts_and_buttons_while_active(runtime, presenter):
    poll = await _create(runtime)
    await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[0].id)

    message = _latest_message(presenter, poll)

    assert "(ENDED)" not in message.embed.title
    assert message.embed.footer.text.startswith("1 participant(s)")
    assert message.view is not None
    custom_ids = [item.custom_id for item in message.view.children]
    assert f"timecord:poll:vote:{poll.id}:{poll.options[0].id}" in custom_ids
    assert f"timecord:poll:end:{poll.id}" in custom_ids


@pytest.mark.asyncio
async def test_ended_poll_is_rendered_without_buttons(runtime, presenter):
    poll = await _create(runtime)
    await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[1].id)

    await runtime.polls.end_poll(poll.id, make_actor(MODERATOR_ID))

    message = _latest_message(presenter, poll)
    assert message.embed.title.endswith("(ENDED)")
    assert message.view is None
    assert any(field.name == "Result" and "Sushi" in field.value for field in message.embed.fields)


@pytest.mark.asyncio
async def test_vote_does_not_redraw_a_poll_ended_before_its_rerender(runtime, presenter, monkeypatch):
    poll = await _create(runtime)
    synchronizer = runtime.synchronizer
    original_refresh = synchronizer.refresh

    async def end_then_refresh(kind, entity_id):
        await runtime.polls.end_poll(entity_id, make_actor(MODERATOR_ID))
        return await original_refresh(kind, entity_id)

    monkeypatch.setattr(synchronizer, "refresh", end_then_refresh)

    assert await runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[0].id) is VoteResult.ADDED

    assert (await runtime.polls.get_poll(poll.id)).active is False
    message = _latest_message(presenter, poll)
    assert message.embed.title.endswith("(ENDED)")
    assert message.view is None


@pytest.mark.asyncio
async def test_end_during_an_active_rerender_is_drawn_last(runtime, presenter, monkeypatch):
    poll = await _create(runtime)
    original_render = presenter.render_or_update
    rendering = asyncio.Event()
    release = asyncio.Event()

    async def slow_active_render(ref, channel_id, message):
        if message.view is not None and not rendering.is_set():
            rendering.set()
            await release.wait()
        return await original_render(ref, channel_id, message)

    monkeypatch.setattr(presenter, "render_or_update", slow_active_render)

    vote = asyncio.create_task(runtime.polls.vote(poll.id, make_actor(MEMBER_ID), poll.options[0].id))
    await rendering.wait()
    end = asyncio.create_task(runtime.polls.end_poll(poll.id, make_actor(MODERATOR_ID)))
    await asyncio.sleep(0.05)
    release.set()
    await asyncio.gather(vote, end)

    message = _latest_message(presenter, poll)
    assert message.embed.title.endswith("(ENDED)")
    assert message.view is None


@pytest.mark.asyncio
async def test_list_active_only_returns_running_polls(runtime):
    first = await _create(runtime)
    second = await _create(runtime)
    await runtime.polls.end_poll(first.id, make_actor(MODERATOR_ID))

    assert [p.id for p in await runtime.polls.list_active(GUILD_ID)] == [second.id]


def test_build_results_percentages_and_ties():
    options = [PollOption(id=i, poll_id=1, text=t, emoji="x", order_index=i) for i, t in enumerate("ABC", 1)]
    poll = Poll(
        id=1, guild_id=GUILD_ID, channel_id=CHANNEL_ID, creator_id=MODERATOR_ID, question="Q",
        allow_multiple=False, anonymous=False, active=False, deadline=None,
        created_at=0.0, updated_at=0.0, options=options,
    )

    results = build_results(poll, {1: 2, 2: 2}, participants=4)

    assert results.total_votes == 4
    assert [t.percentage for t in results.tallies] == [50.0, 50.0, 0.0]
    assert [t.option.text for t in results.winners()] == ["A", "B"]
    assert build_results(poll, {}, participants=0).winners() == []
