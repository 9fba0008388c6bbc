"""Real SQLAlchemy repositories and unit of work against in-memory SQLite."""
import asyncio
from datetime import datetime, timezone
from functools import partial

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dto import LoginDTO, RegisterDTO
from application.services.auth_service import AuthApplicationService
from application.services.view_service import ViewApplicationService
from domain.common.exceptions import (
    SessionRevokedException,
    TokenReuseDetectedException,
    UserAlreadyExistsException,
)
from domain.user.entity import User
from domain.user.session import SessionState
from domain.vlog.entity import Vlog
from infrastructure.adapters.view_cache import InMemoryViewDedupCache
from infrastructure.database import build_engine, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest_asyncio.fixture
async def sql_uow_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(bind=engine)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield partial(SQLAlchemyUnitOfWork, session_factory)
    await engine.dispose()


def _user(name: str = "carol") -> User:
    now = datetime.now(timezone.utc)
    return User(
        id=None,
        username=name,
        email=f"{name}@example.com",
        hashed_password="x",
        created_at=now,
        updated_at=now,
    )


async def _seed_vlog(uow_factory, views: int = 0) -> int:
    async with uow_factory() as uow:
        author = await uow.user_repository.create(_user("author"))
        vlog = await uow.vlog_repository.create(Vlog(id=None, author_id=author.id, title="Road trip", views=views))
    return vlog.id


@pytest.mark.asyncio
async def test_user_roundtrip_includes_session_state(sql_uow_factory):
    async with sql_uow_factory() as uow:
        created = await uow.user_repository.create(_user())

    async with sql_uow_factory(readonly=True) as uow:
        loaded = await uow.user_repository.get_by_email("CAROL@example.com")

    assert loaded.id == created.id
    assert loaded.session == SessionState()
    assert loaded.session.is_active is False


@pytest.mark.asyncio
async def test_duplicate_email_maps_to_domain_error(sql_uow_factory):
    async with sql_uow_factory() as uow:
        await uow.user_repository.create(_user())

    with pytest.raises(UserAlreadyExistsException):
        async with sql_uow_factory() as uow:
            duplicate = _user("carol2")
            duplicate.email = "carol@example.com"
            await uow.user_repository.create(duplicate)


@pytest.mark.asyncio
async def test_save_session_compare_and_set(sql_uow_factory):
    async with sql_uow_factory() as uow:
        user = await uow.user_repository.create(_user())
        user.session.begin("fam1", "hash1")
        assert await uow.user_repository.save_session(user.id, user.session)

    async with sql_uow_factory() as uow:
        user = await uow.user_repository.get_for_update(user.id)
        user.session.advance("hash2")
        assert await uow.user_repository.save_session(
            user.id, user.session, expected_family_id="fam1", expected_version=1
        )

    async with sql_uow_factory() as uow:
        stale = SessionState(token_family_id="fam1", token_version=2, refresh_token_hash="hash-stale")
        assert not await uow.user_repository.save_session(
            user.id, stale, expected_family_id="fam1", expected_version=1
        )
        assert not await uow.user_repository.save_session(
            user.id, stale, expected_family_id="other", expected_version=2
        )

    async with sql_uow_factory(readonly=True) as uow:
        stored = (await uow.user_repository.get_by_id(user.id)).session

    assert (stored.token_family_id, stored.token_version, stored.refresh_token_hash) == ("fam1", 2, "hash2")


@pytest.mark.asyncio
async def test_increment_views_is_pushed_to_database(sql_uow_factory):
    vlog_id = await _seed_vlog(sql_uow_factory, views=10)

    async with sql_uow_factory() as uow:
        assert await uow.vlog_repository.increment_views(vlog_id) == 11
        assert await uow.vlog_repository.increment_views(vlog_id, amount=2) == 13

    async with sql_uow_factory(readonly=True) as uow:
        assert await uow.vlog_repository.get_views(vlog_id) == 13
        assert await uow.vlog_repository.get_views(9999) is None
        assert await uow.vlog_repository.increment_views(9999) is None


@pytest.mark.asyncio
async def test_rollback_discards_increment(sql_uow_factory):
    vlog_id = await _seed_vlog(sql_uow_factory)

    with pytest.raises(RuntimeError):
        async with sql_uow_factory() as uow:
            await uow.vlog_repository.increment_views(vlog_id)
            raise RuntimeError("boom")

    async with sql_uow_factory(readonly=True) as uow:
        assert await uow.vlog_repository.get_views(vlog_id) == 0


@pytest.mark.asyncio
async def test_rotation_protocol_end_to_end(sql_uow_factory):
    service = AuthApplicationService(sql_uow_factory)
    registered = await service.register(
        RegisterDTO(username="dave", email="dave@example.com", password="Passw0rd")
    )

    second = await service.refresh(registered.refresh_token)
    with pytest.raises(TokenReuseDetectedException):
        await service.refresh(registered.refresh_token)
    with pytest.raises(SessionRevokedException):
        await service.refresh(second.refresh_token)

    # The revocation survived the error path
    async with sql_uow_factory(readonly=True) as uow:
        user = await uow.user_repository.get_by_id(registered.user.id)
    assert user.session.is_revoked
    assert user.session.refresh_token_hash == ""

    relogged = await service.login(LoginDTO(email="dave@example.com", password="Passw0rd"))
    assert (await service.refresh(relogged.refresh_token)).refresh_token


@pytest.mark.asyncio
async def test_view_pipeline_end_to_end(sql_uow_factory):
    vlog_id = await _seed_vlog(sql_uow_factory)
    service = ViewApplicationService(sql_uow_factory, InMemoryViewDedupCache(), ttl_seconds=60)

    first = await service.record_view(vlog_id, "sid:one")
    repeat = await service.record_view(vlog_id, "sid:one")
    other = await service.record_view(vlog_id, "sid:two")

    assert (first.views, first.incremented) == (1, True)
    assert (repeat.views, repeat.incremented) == (1, False)
    assert (other.views, other.incremented) == (2, True)
    assert (await service.get_vlog(vlog_id)).views == 2


class _SlowWinnerCache(InMemoryViewDedupCache):
    async def mark_viewed(self, content_id, viewer_id, ttl_seconds):
        inserted = await super().mark_viewed(content_id, viewer_id, ttl_seconds)
        if inserted:
            await asyncio.sleep(0.05)
        return inserted


@pytest.mark.asyncio
async def test_concurrent_duplicate_views_agree_on_count(sql_uow_factory):
    vlog_id = await _seed_vlog(sql_uow_factory)
    service = ViewApplicationService(
        sql_uow_factory, _SlowWinnerCache(), ttl_seconds=60, count_wait_attempts=50, count_wait_interval=0.01
    )

    first, second = await asyncio.gather(
        service.record_view(vlog_id, "userA"),
        service.record_view(vlog_id, "userA"),
    )

    assert {first.incremented, second.incremented} == {True, False}
    assert first.views == second.views == 1


@pytest.mark.asyncio
async def test_email_verification_persists(sql_uow_factory, notifier):
    service = AuthApplicationService(sql_uow_factory, notifier=notifier)
    registered = await service.register(
        RegisterDTO(username="erin", email="erin@example.com", password="Passw0rd")
    )
    token = notifier.sent[0][1][3]

    await service.verify_email(token)

    async with sql_uow_factory(readonly=True) as uow:
        user = await uow.user_repository.get_by_id(registered.user.id)
        assert await uow.user_repository.get_by_verification_token_hash("missing") is None
    assert user.is_verified is True
    assert user.verification_token_hash is None
    assert user.session.token_version == 1
