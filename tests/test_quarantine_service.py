import pytest
import pytest_asyncio

from conftest import GUILD_ID, LOG_CHANNEL_ID, MEMBER_ID, MODERATOR_ID, QUARANTINE_ROLE_ID, make_actor
from timecord.datatypes.lifecycle_datatypes import EntityKind
from timecord.lifecycle.effects.quarantine_effect import restorable_roles
from timecord.lifecycle.errors import (
    AlreadyTerminal,
    EntityNotFound,
    EntryConflict,
    Forbidden,
    InvalidRequest,
    UpstreamUnavailable,
)
from timecord.services.quarantine_service import ROLE_NOT_CONFIGURED, snapshot_roles

HELPER_ROLE_ID = 11
MEMBER_ROLE_ID = 12

MODERATOR = make_actor(MODERATOR_ID, privileged=True)


@pytest_asyncio.fixture
async def configured(runtime, presenter):
    """Runtime whose guild has a quarantine role and a member holding two roles."""
    await runtime.quarantine.setup_role(GUILD_ID, MODERATOR)
    presenter.guild_roles[GUILD_ID].update({GUILD_ID, HELPER_ROLE_ID, MEMBER_ROLE_ID})
    presenter.member_roles[(GUILD_ID, MEMBER_ID)] = [GUILD_ID, HELPER_ROLE_ID, MEMBER_ROLE_ID]
    return runtime


def test_snapshot_roles_drops_everyone_and_quarantine_role():
    roles = [GUILD_ID, HELPER_ROLE_ID, QUARANTINE_ROLE_ID, MEMBER_ROLE_ID]

    assert snapshot_roles(roles, guild_id=GUILD_ID, quarantine_role_id=QUARANTINE_ROLE_ID) == [
        HELPER_ROLE_ID,
        MEMBER_ROLE_ID,
    ]


def test_restorable_roles_skips_deleted_roles_and_keeps_order():
    previous = [MEMBER_ROLE_ID, 99, HELPER_ROLE_ID, QUARANTINE_ROLE_ID]
    existing = {HELPER_ROLE_ID, MEMBER_ROLE_ID, QUARANTINE_ROLE_ID}

    assert restorable_roles(previous, existing, guild_id=GUILD_ID, quarantine_role_id=QUARANTINE_ROLE_ID) == [
        MEMBER_ROLE_ID,
        HELPER_ROLE_ID,
    ]


@pytest.mark.asyncio
async def test_quarantine_requires_configured_role(runtime, presenter):
    presenter.member_roles[(GUILD_ID, MEMBER_ID)] = [HELPER_ROLE_ID]

    with pytest.raises(InvalidRequest) as excinfo:
        await runtime.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    assert excinfo.value.user_message == ROLE_NOT_CONFIGURED
    assert presenter.role_calls == []


@pytest.mark.asyncio
async def test_quarantine_validates_actor_and_arguments(configured):
    service = configured.quarantine

    with pytest.raises(Forbidden):
        await service.quarantine(GUILD_ID, MEMBER_ID, make_actor(MODERATOR_ID), duration_seconds=60)
    with pytest.raises(InvalidRequest):
        await service.quarantine(GUILD_ID, MODERATOR_ID, MODERATOR, duration_seconds=60)
    with pytest.raises(InvalidRequest):
        await service.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=0)
    with pytest.raises(InvalidRequest):
        await service.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, reason="x" * 501)
    with pytest.raises(EntityNotFound):
        await service.quarantine(GUILD_ID, MEMBER_ID + 500, MODERATOR, duration_seconds=60)


@pytest.mark.asyncio
async def test_quarantine_then_expiry_restores_roles(configured, presenter, clock):
    entry = await configured.quarantine.quarantine(
        GUILD_ID, MEMBER_ID, MODERATOR, reason="spam", duration_seconds=3600
    )

    assert entry.previous_roles == [HELPER_ROLE_ID, MEMBER_ROLE_ID]
    assert entry.deadline == clock() + 3600
    assert presenter.member_roles[(GUILD_ID, MEMBER_ID)] == [QUARANTINE_ROLE_ID]
    assert [uid for uid, _ in presenter.dms] == [MEMBER_ID]
    assert entry.id in configured.quarantine_engine.timers

    clock.advance(3601)
    assert await configured.quarantine_engine.sweep() == 1

    assert sorted(presenter.member_roles[(GUILD_ID, MEMBER_ID)]) == [HELPER_ROLE_ID, MEMBER_ROLE_ID]
    assert await configured.quarantine.status(GUILD_ID, MEMBER_ID) is None
    assert len(presenter.dms) == 2

    records = await configured.audit.for_entity(EntityKind.QUARANTINE, entry.id)
    assert [r.action for r in records] == ["QUARANTINE_ADD", "QUARANTINE_EXPIRED"]
    assert records[1].actor_id is None
    assert records[1].details == {"restored_roles": [HELPER_ROLE_ID, MEMBER_ROLE_ID], "failed_effects": []}


@pytest.mark.asyncio
async def test_roles_deleted_during_quarantine_are_not_restored(configured, presenter):
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)
    presenter.guild_roles[GUILD_ID].discard(MEMBER_ROLE_ID)

    await configured.quarantine.remove(entry.id, MODERATOR)

    assert presenter.member_roles[(GUILD_ID, MEMBER_ID)] == [HELPER_ROLE_ID]


@pytest.mark.asyncio
async def test_second_quarantine_of_same_member_conflicts(configured):
    await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    with pytest.raises(EntryConflict):
        await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    assert len(await configured.quarantine.list_active(GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_failed_role_change_rolls_back_entry(configured, presenter):
    presenter.fail_replace_roles = True

    with pytest.raises(UpstreamUnavailable):
        await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    assert await configured.quarantine.status(GUILD_ID, MEMBER_ID) is None
    assert await configured.quarantine.history(GUILD_ID, MEMBER_ID) == []
    assert len(configured.quarantine_engine.timers) == 0


@pytest.mark.asyncio
async def test_remove_member_lifts_quarantine_and_audits(configured, presenter):
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=None)
    assert entry.deadline is None
    assert entry.id not in configured.quarantine_engine.timers

    with pytest.raises(Forbidden):
        await configured.quarantine.remove_member(GUILD_ID, MEMBER_ID, make_actor(MODERATOR_ID))

    lifted = await configured.quarantine.remove_member(GUILD_ID, MEMBER_ID, MODERATOR)

    assert lifted.id == entry.id
    assert sorted(presenter.member_roles[(GUILD_ID, MEMBER_ID)]) == [HELPER_ROLE_ID, MEMBER_ROLE_ID]
    records = await configured.audit.for_entity(EntityKind.QUARANTINE, entry.id)
    assert records[-1].action == "QUARANTINE_REMOVE"
    assert records[-1].actor_id == MODERATOR_ID

    with pytest.raises(EntityNotFound):
        await configured.quarantine.remove_member(GUILD_ID, MEMBER_ID, MODERATOR)
    with pytest.raises(AlreadyTerminal):
        await configured.quarantine.remove(entry.id, MODERATOR)


@pytest.mark.asyncio
async def test_change_duration_rearms_and_clears_timer(configured, clock):
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    deadline = await configured.quarantine.change_duration(entry.id, 7200, MODERATOR)
    assert deadline == clock() + 7200
    assert (await configured.quarantine.status(GUILD_ID, MEMBER_ID)).deadline == deadline
    assert entry.id in configured.quarantine_engine.timers

    assert await configured.quarantine.change_duration(entry.id, None, MODERATOR) is None
    assert (await configured.quarantine.status(GUILD_ID, MEMBER_ID)).deadline is None
    assert entry.id not in configured.quarantine_engine.timers

    # An indefinite quarantine is never picked up by the sweep
    clock.advance(10 * 24 * 60 * 60)
    assert await configured.quarantine_engine.sweep() == 0

    records = await configured.audit.for_entity(EntityKind.QUARANTINE, entry.id)
    assert [r.action for r in records].count("QUARANTINE_DURATION") == 2


@pytest.mark.asyncio
async def test_change_duration_of_lifted_quarantine_fails(configured):
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)
    await configured.quarantine.remove(entry.id, MODERATOR)

    with pytest.raises(AlreadyTerminal):
        await configured.quarantine.change_duration(entry.id, 60, MODERATOR)
    with pytest.raises(EntityNotFound):
        await configured.quarantine.change_duration(999_999, 60, MODERATOR)


@pytest.mark.asyncio
async def test_log_channel_card_tracks_entry_state(configured, presenter):
    await configured.quarantine.set_log_channel(GUILD_ID, LOG_CHANNEL_ID, MODERATOR)

    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, reason="raid", duration_seconds=3600)

    assert entry.render_ref.channel_id == LOG_CHANNEL_ID
    card = presenter.messages[entry.render_ref]
    assert "Quarantined" in card.embed.title
    assert card.view.children[0].custom_id == f"timecord:quarantine:remove:{entry.id}"

    await configured.quarantine.remove(entry.id, MODERATOR)

    card = presenter.messages[entry.render_ref]
    assert "Lifted" in card.embed.title
    assert card.view is None


@pytest.mark.asyncio
async def test_failed_log_card_update_is_audited(configured, presenter):
    await configured.quarantine.set_log_channel(GUILD_ID, LOG_CHANNEL_ID, MODERATOR)
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    presenter.fail_render = True
    await configured.quarantine.remove(entry.id, MODERATOR)

    records = await configured.audit.for_entity(EntityKind.QUARANTINE, entry.id)
    assert records[-1].action == "QUARANTINE_REMOVE"
    assert records[-1].details["failed_effects"] == ["render"]
    assert sorted(presenter.member_roles[(GUILD_ID, MEMBER_ID)]) == [HELPER_ROLE_ID, MEMBER_ROLE_ID]


@pytest.mark.asyncio
async def test_lift_without_log_channel_records_no_render_failure(configured):
    entry = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    await configured.quarantine.remove(entry.id, MODERATOR)

    records = await configured.audit.for_entity(EntityKind.QUARANTINE, entry.id)
    assert "render" not in records[-1].details["failed_effects"]


@pytest.mark.asyncio
async def test_notify_flag_overrides_default(configured, presenter):
    await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600, notify=False)

    assert presenter.dms == []


@pytest.mark.asyncio
async def test_history_lists_past_entries_newest_first(configured):
    first = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)
    await configured.quarantine.remove(first.id, MODERATOR)
    second = await configured.quarantine.quarantine(GUILD_ID, MEMBER_ID, MODERATOR, duration_seconds=3600)

    history = await configured.quarantine.history(GUILD_ID, MEMBER_ID)

    assert [e.id for e in history] == [second.id, first.id]
    assert [e.active for e in history] == [True, False]
