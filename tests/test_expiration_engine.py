import asyncio
import random

import pytest

from conftest import CHANNEL_ID, GUILD_ID, MODERATOR_ID, OTHER_MEMBER_ID, make_actor
from timecord.datatypes.lifecycle_datatypes import EntityKind, ExpirationContext, ExpirationOutcome
from timecord.lifecycle.errors import AlreadyTerminal, EntityNotFound, Forbidden
from timecord.lifecycle.events import EventType
from timecord.lifecycle.runtime import build_runtime


async def _create_poll(runtime, *, duration_seconds=600, question="Lunch?"):
    return await runtime.polls.create_poll(
        GUILD_ID,
        CHANNEL_ID,
        make_actor(MODERATOR_ID),
        question,
        ["Pizza", "Sushi"],
        duration_seconds=duration_seconds,
    )


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(0.01)
    return False


@pytest.mark.asyncio
async def test_arm_registers_timer_for_active_entity_with_deadline(runtime):
    poll = await _create_poll(runtime)

    assert poll.id in runtime.poll_engine.timers
    assert len(runtime.poll_engine.timers) == 1


@pytest.mark.asyncio
async def test_entity_without_deadline_is_not_armed(runtime):
    poll = await _create_poll(runtime, duration_seconds=None)

    assert poll.deadline is None
    assert poll.id not in runtime.poll_engine.timers
    assert runtime.poll_engine.arm(poll) is False


@pytest.mark.asyncio
async def test_concurrent_sweeps_process_each_row_exactly_once(runtime, clock):
    first = await _create_poll(runtime, question="First?")
    second = await _create_poll(runtime, question="Second?")
    clock.advance(601)
    # Timers armed before the clock moved keep their original delay
    await asyncio.sleep(0.01)
    assert first.id in runtime.poll_engine.timers and second.id in runtime.poll_engine.timers

    results = await asyncio.gather(*(runtime.poll_engine.sweep() for _ in range(5)))

    assert sum(results) == 2
    for poll in (first, second):
        records = await runtime.audit.for_entity(EntityKind.POLL, poll.id)
        assert [r.action for r in records] == ["POLL_ENDED"]
        stored = await runtime.polls.get_poll(poll.id)
        assert stored.active is False


@pytest.mark.asyncio
async def test_process_is_idempotent_sequentially(runtime, clock):
    poll = await _create_poll(runtime)
    clock.advance(601)

    assert await runtime.poll_engine.process(poll.id) is ExpirationOutcome.PROCESSED
    assert await runtime.poll_engine.process(poll.id) is ExpirationOutcome.ALREADY_TERMINAL
    assert await runtime.poll_engine.process(987654) is ExpirationOutcome.NOT_FOUND

    records = await runtime.audit.for_entity(EntityKind.POLL, poll.id)
    assert len(records) == 1


@pytest.mark.asyncio
async def test_process_is_idempotent_under_concurrency(runtime):
    poll = await _create_poll(runtime)

    outcomes = await asyncio.gather(*(runtime.poll_engine.process(poll.id) for _ in range(10)))

    assert outcomes.count(ExpirationOutcome.PROCESSED) == 1
    assert all(o is ExpirationOutcome.ALREADY_TERMINAL for o in outcomes if o is not ExpirationOutcome.PROCESSED)
    assert len(await runtime.audit.for_entity(EntityKind.POLL, poll.id)) == 1


@pytest.mark.asyncio
async def test_process_cancels_pending_timer(runtime):
    poll = await _create_poll(runtime)
    assert poll.id in runtime.poll_engine.timers

    await runtime.poll_engine.process(poll.id)

    assert poll.id not in runtime.poll_engine.timers


@pytest.mark.asyncio
async def test_recovery_rearms_timers_after_restart(db, presenter, settings, clock, runtime):
    poll = await _create_poll(runtime)
    await runtime.shutdown()
    assert len(runtime.poll_engine.timers) == 0

    restarted = build_runtime(db, presenter, settings, clock=clock, rng=random.Random(1))
    try:
        armed = await restarted.recover_guild(GUILD_ID)
        assert armed == 1
        assert poll.id in restarted.poll_engine.timers
        assert await restarted.recover_guild(GUILD_ID + 1) == 0
    finally:
        await restarted.shutdown()


@pytest.mark.asyncio
async def test_recovery_fires_overdue_rows_immediately(db, presenter, settings, clock, runtime):
    poll = await _create_poll(runtime)
    await runtime.shutdown()
    clock.advance(3600)

    restarted = build_runtime(db, presenter, settings, clock=clock, rng=random.Random(1))
    try:
        await restarted.recover_guild(GUILD_ID)

        async def expired():
            stored = await restarted.polls.get_poll(poll.id)
            return not stored.active

        assert await _wait_until(expired)
        assert len(await restarted.audit.for_entity(EntityKind.POLL, poll.id)) == 1
    finally:
        await restarted.shutdown()


@pytest.mark.asyncio
async def test_timer_fires_and_expires_entity(runtime, clock):
    poll = await _create_poll(runtime)
    # Re-arm against the fake clock so the timer is already due
    clock.advance(601)
    runtime.poll_engine.arm(poll)

    async def expired():
        stored = await runtime.polls.get_poll(poll.id)
        return not stored.active

    assert await _wait_until(expired)
    assert poll.id not in runtime.poll_engine.timers


@pytest.mark.asyncio
async def test_manual_termination_then_late_timer_writes_one_audit_row(runtime):
    poll = await _create_poll(runtime)
    creator = make_actor(MODERATOR_ID)

    await runtime.polls.end_poll(poll.id, creator)
    assert poll.id not in runtime.poll_engine.timers

    # A timer or sweep arriving late must find the row inactive
    outcome = await runtime.poll_engine.process(poll.id)

    assert outcome is ExpirationOutcome.ALREADY_TERMINAL
    records = await runtime.audit.for_entity(EntityKind.POLL, poll.id)
    assert len(records) == 1
    assert records[0].actor_id == MODERATOR_ID
    assert records[0].details["reason"] == "ended"


@pytest.mark.asyncio
async def test_terminate_rejects_wrong_guild_stranger_and_repeat(runtime):
    poll = await _create_poll(runtime)

    with pytest.raises(EntityNotFound):
        await runtime.poll_engine.terminate(poll.id, make_actor(MODERATOR_ID, guild_id=GUILD_ID + 1))
    with pytest.raises(Forbidden):
        await runtime.poll_engine.terminate(poll.id, make_actor(OTHER_MEMBER_ID))

    await runtime.poll_engine.terminate(poll.id, make_actor(OTHER_MEMBER_ID, privileged=True))

    with pytest.raises(AlreadyTerminal):
        await runtime.poll_engine.terminate(poll.id, make_actor(MODERATOR_ID))


@pytest.mark.asyncio
async def test_sweep_continues_after_row_failure(runtime, clock, monkeypatch):
    broken = await _create_poll(runtime, question="Broken?")
    healthy = await _create_poll(runtime, question="Healthy?")
    clock.advance(601)

    store = runtime.poll_engine.store
    original = store.deactivate

    async def flaky_deactivate(conn, entity_id, now, ended_by=None):
        if entity_id == broken.id:
            raise RuntimeError("disk on fire")
        return await original(conn, entity_id, now, ended_by)

    monkeypatch.setattr(store, "deactivate", flaky_deactivate)

    assert await runtime.poll_engine.sweep() == 1
    assert (await runtime.polls.get_poll(broken.id)).active is True
    assert (await runtime.polls.get_poll(healthy.id)).active is False

    # The failed row stays overdue and is picked up once the store recovers
    monkeypatch.setattr(store, "deactivate", original)
    assert await runtime.poll_engine.sweep() == 1
    assert (await runtime.polls.get_poll(broken.id)).active is False


@pytest.mark.asyncio
async def test_recovery_continues_after_row_failure(db, presenter, settings, clock, runtime, monkeypatch):
    broken = await _create_poll(runtime, question="Broken?")
    healthy = await _create_poll(runtime, question="Healthy?")
    await runtime.shutdown()

    restarted = build_runtime(db, presenter, settings, clock=clock, rng=random.Random(1))
    engine = restarted.poll_engine
    original = engine._arm

    def flaky_arm(entity_id, deadline):
        if entity_id == broken.id:
            raise RuntimeError("boom")
        original(entity_id, deadline)

    monkeypatch.setattr(engine, "_arm", flaky_arm)
    try:
        assert await engine.recover_guild(GUILD_ID) == 1
        assert healthy.id in engine.timers
        assert broken.id not in engine.timers
    finally:
        await restarted.shutdown()


@pytest.mark.asyncio
async def test_effect_failure_does_not_undo_terminal_write(runtime, presenter):
    poll = await _create_poll(runtime)
    presenter.fail_render = True

    outcome = await runtime.poll_engine.process(poll.id)

    assert outcome is ExpirationOutcome.PROCESSED
    assert (await runtime.polls.get_poll(poll.id)).active is False
    records = await runtime.audit.for_entity(EntityKind.POLL, poll.id)
    assert records[0].details["failed_effects"] == ["render"]


@pytest.mark.asyncio
async def test_events_report_expired_and_ended(runtime, clock):
    seen = []

    async def collect(event):
        seen.append((event.type, event.entity_id, event.actor_id))

    runtime.events.subscribe(EventType.EXPIRED, collect)
    runtime.events.subscribe(EventType.ENDED, collect)

    expiring = await _create_poll(runtime, question="Expiring?")
    ending = await _create_poll(runtime, question="Ending?")

    await runtime.polls.end_poll(ending.id, make_actor(MODERATOR_ID))
    clock.advance(601)
    await runtime.poll_engine.sweep()

    assert (EventType.ENDED, ending.id, MODERATOR_ID) in seen
    assert (EventType.EXPIRED, expiring.id, None) in seen
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_failing_event_handler_does_not_break_processing(runtime):
    async def broken(event):
        raise ValueError("subscriber bug")

    runtime.events.subscribe(EventType.EXPIRED, broken)
    poll = await _create_poll(runtime)

    outcome = await runtime.poll_engine.process(poll.id, ExpirationContext())

    assert outcome is ExpirationOutcome.PROCESSED


@pytest.mark.asyncio
async def test_purge_history_removes_old_inactive_rows_only(runtime, clock):
    ended = await _create_poll(runtime, question="Old?")
    running = await _create_poll(runtime, question="Running?", duration_seconds=None)
    await runtime.polls.end_poll(ended.id, make_actor(MODERATOR_ID))

    assert await runtime.poll_engine.purge_history(retention_days=30) == 0

    clock.advance(31 * 24 * 60 * 60)
    assert await runtime.poll_engine.purge_history(retention_days=30) == 1

    assert await runtime.polls.get_poll(ended.id) is None
    assert await runtime.polls.get_poll(running.id) is not None
