"""Pytest bootstrap configuration.

Mandatory environment variables are set before test collection so module
imports that build application settings succeed. The in-memory unit of work
below mirrors the transactional behaviour the services rely on: staged
writes, commit/rollback, and a per-user lock held by ``get_for_update``
until the unit of work exits.
"""
import asyncio
import copy
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

# Mandatory secret keys for settings validation (must differ)
os.environ.setdefault("SECRET_KEY", "test-access-secret-key")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
# Cheap bcrypt in tests
os.environ.setdefault("REFRESH_TOKEN_HASH_ROUNDS", "4")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

from domain.common.exceptions import UserAlreadyExistsException, UsernameAlreadyExistsException  # noqa: E402
from domain.common.unit_of_work import AbstractUnitOfWork  # noqa: E402
from domain.user.entity import User  # noqa: E402
from domain.user.repository import UserRepository  # noqa: E402
from domain.user.session import SessionState  # noqa: E402
from domain.vlog.entity import Vlog  # noqa: E402
from domain.vlog.repository import VlogRepository  # noqa: E402


class InMemoryStore:
    """Committed state shared by every FakeUnitOfWork built from it."""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.vlogs: Dict[int, Vlog] = {}
        self.locks: Dict[int, asyncio.Lock] = {}
        self.commits = 0
        self._next_user_id = 1
        self._next_vlog_id = 1

    def next_user_id(self) -> int:
        value = self._next_user_id
        self._next_user_id += 1
        return value

    def next_vlog_id(self) -> int:
        value = self._next_vlog_id
        self._next_vlog_id += 1
        return value

    def lock_for(self, user_id: int) -> asyncio.Lock:
        return self.locks.setdefault(user_id, asyncio.Lock())

    def session_of(self, user_id: int) -> SessionState:
        return copy.deepcopy(self.users[user_id].session)

    def add_vlog(self, title: str = "First trip", author_id: int = 1, views: int = 0) -> Vlog:
        vlog = Vlog(
            id=self.next_vlog_id(),
            author_id=author_id,
            title=title,
            views=views,
            created_at=datetime.now(timezone.utc),
        )
        self.vlogs[vlog.id] = vlog
        return copy.deepcopy(vlog)


class FakeUserRepository(UserRepository):
    def __init__(self, uow: "FakeUnitOfWork"):
        self.uow = uow
        self.store = uow.store

    def _current(self, user_id: int) -> Optional[User]:
        if user_id in self.uow.staged_users:
            return self.uow.staged_users[user_id]
        return self.store.users.get(user_id)

    def _all(self) -> List[User]:
        merged = dict(self.store.users)
        merged.update(self.uow.staged_users)
        return list(merged.values())

    async def create(self, user: User) -> User:
        for existing in self._all():
            if existing.username == user.username:
                raise UsernameAlreadyExistsException(user.username)
            if existing.email == user.email:
                raise UserAlreadyExistsException(user.email)
        created = copy.deepcopy(user)
        created.id = self.store.next_user_id()
        self.uow.staged_users[created.id] = created
        return copy.deepcopy(created)

    async def get_by_id(self, user_id: int) -> Optional[User]:
        user = self._current(user_id)
        return copy.deepcopy(user) if user else None

    async def get_for_update(self, user_id: int) -> Optional[User]:
        await self.uow.acquire(user_id)
        return await self.get_by_id(user_id)

    async def get_by_username(self, username: str) -> Optional[User]:
        for user in self._all():
            if user.username == username:
                return copy.deepcopy(user)
        return None

    async def get_by_email(self, email: str) -> Optional[User]:
        for user in self._all():
            if user.email == email.lower():
                return copy.deepcopy(user)
        return None

    async def get_by_verification_token_hash(self, token_hash: str) -> Optional[User]:
        for user in self._all():
            if user.verification_token_hash and user.verification_token_hash == token_hash:
                return copy.deepcopy(user)
        return None

    async def update(self, user: User) -> User:
        current = self._current(user.id)
        staged = copy.deepcopy(user)
        if current is not None:
            staged.session = copy.deepcopy(current.session)
        self.uow.staged_users[user.id] = staged
        return copy.deepcopy(staged)

    async def save_session(
        self,
        user_id: int,
        session: SessionState,
        *,
        expected_family_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> bool:
        current = self._current(user_id)
        if current is None:
            return False
        if expected_family_id is not None and current.session.token_family_id != expected_family_id:
            return False
        if expected_version is not None and current.session.token_version != expected_version:
            return False
        staged = copy.deepcopy(current)
        staged.session = copy.deepcopy(session)
        self.uow.staged_users[user_id] = staged
        return True

    async def exists_by_username(self, username: str) -> bool:
        return await self.get_by_username(username) is not None

    async def exists_by_email(self, email: str) -> bool:
        return await self.get_by_email(email) is not None


class FakeVlogRepository(VlogRepository):
    def __init__(self, uow: "FakeUnitOfWork"):
        self.uow = uow
        self.store = uow.store

    async def create(self, vlog: Vlog) -> Vlog:
        created = copy.deepcopy(vlog)
        created.id = created.id or self.store.next_vlog_id()
        self.uow.staged_vlogs[created.id] = created
        return copy.deepcopy(created)

    async def get_by_id(self, vlog_id: int) -> Optional[Vlog]:
        vlog = self.uow.staged_vlogs.get(vlog_id) or self.store.vlogs.get(vlog_id)
        if vlog is None:
            return None
        result = copy.deepcopy(vlog)
        result.views += self.uow.view_deltas.get(vlog_id, 0)
        return result

    async def get_views(self, vlog_id: int) -> Optional[int]:
        vlog = await self.get_by_id(vlog_id)
        return vlog.views if vlog else None

    async def increment_views(self, vlog_id: int, amount: int = 1) -> Optional[int]:
        if vlog_id not in self.store.vlogs and vlog_id not in self.uow.staged_vlogs:
            return None
        self.uow.view_deltas[vlog_id] = self.uow.view_deltas.get(vlog_id, 0) + amount
        return await self.get_views(vlog_id)


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self.staged_users: Dict[int, User] = {}
        self.staged_vlogs: Dict[int, Vlog] = {}
        self.view_deltas: Dict[int, int] = {}
        self._held: List[asyncio.Lock] = []
        self._held_ids: set = set()

    async def acquire(self, user_id: int) -> None:
        if user_id in self._held_ids:
            return
        lock = self.store.lock_for(user_id)
        await lock.acquire()
        self._held.append(lock)
        self._held_ids.add(user_id)

    async def __aenter__(self) -> "FakeUnitOfWork":
        self.user_repository = FakeUserRepository(self)
        self.vlog_repository = FakeVlogRepository(self)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            for lock in self._held:
                lock.release()
            self._held.clear()
            self._held_ids.clear()

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        self.store.users.update(self.staged_users)
        self.store.vlogs.update(self.staged_vlogs)
        for vlog_id, delta in self.view_deltas.items():
            self.store.vlogs[vlog_id].views += delta
        self.staged_users = {}
        self.staged_vlogs = {}
        self.view_deltas = {}
        self.store.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self.staged_users = {}
        self.staged_vlogs = {}
        self.view_deltas = {}
        self._committed = False


class StubNotifier:
    """Records outbound notifications instead of queueing tasks."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Tuple[str, tuple]] = []

    def _record(self, kind: str, *args) -> None:
        if self.fail:
            raise RuntimeError("broker down")
        self.sent.append((kind, args))

    def send_verification_email(self, user_id, email, username, token):
        self._record("verification", user_id, email, username, token)

    def send_welcome_email(self, user_id, email, username):
        self._record("welcome", user_id, email, username)

    def send_security_alert(self, user_id, reason):
        self._record("security_alert", user_id, reason)

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.sent]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def factory(readonly: bool = False) -> FakeUnitOfWork:
        return FakeUnitOfWork(store, readonly=readonly)

    return factory


@pytest.fixture
def notifier() -> StubNotifier:
    return StubNotifier()


@pytest.fixture
def failing_notifier() -> StubNotifier:
    return StubNotifier(fail=True)
