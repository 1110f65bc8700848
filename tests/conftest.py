"""
Pytest configuration and fixtures for Timecord tests.
"""

import os
import random
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

# Keep test runs from writing session logs into the repository
os.environ.setdefault("TIMECORD_LOG_DIR", tempfile.mkdtemp(prefix="timecord-test-logs-"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from timecord.configuration.app_configuration import LifecycleSettings  # noqa: E402
from timecord.database.db_connection import ConnectionManager  # noqa: E402
from timecord.datatypes.lifecycle_datatypes import Actor, MessageRef  # noqa: E402
from timecord.lifecycle.errors import UpstreamUnavailable  # noqa: E402
from timecord.lifecycle.runtime import build_runtime  # noqa: E402

GUILD_ID = 1000
MODERATOR_ID = 2000
MEMBER_ID = 3000
OTHER_MEMBER_ID = 3001
QUARANTINE_ROLE_ID = 4000
LOG_CHANNEL_ID = 5000
CHANNEL_ID = 6000


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePresenter:
    """
    Recording ``Presenter``.

    Messages are kept in ``messages`` keyed by ``MessageRef``; role changes
    are applied to ``member_roles`` so tests can assert the final state.
    """

    def __init__(self) -> None:
        self.messages = {}
        self.posts = []
        self.dms = []
        self.role_calls = []
        self.member_roles = {}
        self.guild_roles = {}
        self.fail_render = False
        self.fail_replace_roles = False
        self.fail_grant_roles = False
        self.fail_dm = False
        self._next_message_id = 900_000

    def _new_ref(self, channel_id: int) -> MessageRef:
        self._next_message_id += 1
        return MessageRef(channel_id=channel_id, message_id=self._next_message_id)

    async def render_or_update(self, ref, channel_id, message):
        if self.fail_render:
            raise UpstreamUnavailable("render failed")
        if ref is None:
            ref = self._new_ref(channel_id)
        self.messages[ref] = message
        return ref

    async def post(self, channel_id, message):
        if self.fail_render:
            return None
        self.posts.append((channel_id, message))
        return self._new_ref(channel_id)

    async def notify_direct(self, user_id, message):
        if self.fail_dm:
            return False
        self.dms.append((user_id, message))
        return True

    async def grant_roles(self, guild_id, user_id, role_ids, reason):
        role_ids = list(role_ids)
        self.role_calls.append(("grant", guild_id, user_id, role_ids))
        if self.fail_grant_roles:
            raise UpstreamUnavailable("grant failed")
        current = self.member_roles.setdefault((guild_id, user_id), [])
        current.extend(r for r in role_ids if r not in current)

    async def revoke_roles(self, guild_id, user_id, role_ids, reason):
        role_ids = list(role_ids)
        self.role_calls.append(("revoke", guild_id, user_id, role_ids))
        current = self.member_roles.setdefault((guild_id, user_id), [])
        self.member_roles[(guild_id, user_id)] = [r for r in current if r not in role_ids]

    async def replace_roles(self, guild_id, user_id, role_ids, reason):
        role_ids = list(role_ids)
        self.role_calls.append(("replace", guild_id, user_id, role_ids))
        if self.fail_replace_roles:
            raise UpstreamUnavailable("replace failed")
        self.member_roles[(guild_id, user_id)] = role_ids

    async def member_role_ids(self, guild_id, user_id):
        roles = self.member_roles.get((guild_id, user_id))
        return list(roles) if roles is not None else None

    async def guild_role_ids(self, guild_id):
        return set(self.guild_roles.get(guild_id, set()))

    async def create_quarantine_role(self, guild_id, reason):
        self.guild_roles.setdefault(guild_id, set()).add(QUARANTINE_ROLE_ID)
        return QUARANTINE_ROLE_ID


def make_actor(user_id: int = MODERATOR_ID, *, privileged: bool = False, roles=(), guild_id: int = GUILD_ID) -> Actor:
    return Actor(user_id=user_id, guild_id=guild_id, role_ids=frozenset(roles), privileged=privileged)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presenter() -> FakePresenter:
    return FakePresenter()


@pytest.fixture
def settings() -> LifecycleSettings:
    return LifecycleSettings()


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = ConnectionManager()
    await manager.open(tmp_path / "timecord.db")
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def runtime(db, presenter, settings, clock):
    rt = build_runtime(db, presenter, settings, clock=clock, rng=random.Random(1234))
    yield rt
    await rt.shutdown()
