import hashlib

import pytest

from application.dto import LoginDTO, RegisterDTO
from application.services.auth_service import AuthApplicationService
from domain.common.exceptions import (
    DomainValidationException,
    InvalidCredentialsException,
    InvalidTokenException,
    InvalidVerificationTokenException,
    SessionRevokedException,
    UserAlreadyExistsException,
    UsernameAlreadyExistsException,
    UserNotFoundException,
)


def _register_dto(name: str = "alice", password: str = "Passw0rd") -> RegisterDTO:
    return RegisterDTO(username=name, email=f"{name.upper()}@Example.com", password=password)


@pytest.mark.asyncio
async def test_register_opens_session_and_queues_verification(uow_factory, store, notifier):
    service = AuthApplicationService(uow_factory, notifier=notifier)

    result = await service.register(_register_dto())

    assert result.user.email == "alice@example.com"
    assert result.user.is_verified is False
    assert result.token_type == "bearer"
    assert service.verify_token(result.access_token) == result.user.id
    assert store.session_of(result.user.id).token_version == 1

    kind, (user_id, email, username, token) = notifier.sent[0]
    assert kind == "verification"
    assert (user_id, email, username) == (result.user.id, "alice@example.com", "alice")
    # Only the digest of the verification token is persisted
    assert store.users[user_id].verification_token_hash == hashlib.sha256(token.encode()).hexdigest()


@pytest.mark.asyncio
async def test_register_rejects_duplicates(uow_factory):
    service = AuthApplicationService(uow_factory)
    await service.register(_register_dto())

    with pytest.raises(UsernameAlreadyExistsException):
        await service.register(_register_dto())
    with pytest.raises(UserAlreadyExistsException):
        await service.register(
            RegisterDTO(username="alice2", email="alice@example.com", password="Passw0rd")
        )


@pytest.mark.asyncio
async def test_register_enforces_password_strength(uow_factory, store):
    service = AuthApplicationService(uow_factory)

    with pytest.raises(DomainValidationException):
        await service.register(_register_dto(password="alllowercase1"))
    assert store.users == {}


@pytest.mark.asyncio
async def test_first_login_sends_welcome_once(uow_factory, notifier):
    service = AuthApplicationService(uow_factory, notifier=notifier)
    await service.register(_register_dto())

    first = await service.login(LoginDTO(email="alice@example.com", password="Passw0rd"))
    await service.login(LoginDTO(email="ALICE@example.com", password="Passw0rd"))

    assert notifier.kinds() == ["verification", "welcome"]
    assert first.user.last_login is not None


@pytest.mark.asyncio
async def test_login_starts_new_family_and_retires_old_tokens(uow_factory, store):
    service = AuthApplicationService(uow_factory)
    registered = await service.register(_register_dto())
    old_family = store.session_of(registered.user.id).token_family_id

    await service.login(LoginDTO(email="alice@example.com", password="Passw0rd"))

    session = store.session_of(registered.user.id)
    assert session.token_family_id != old_family
    assert session.token_version == 1
    with pytest.raises(InvalidTokenException):
        await service.refresh(registered.refresh_token)


@pytest.mark.asyncio
async def test_login_after_logout_clears_revocation(uow_factory, store):
    service = AuthApplicationService(uow_factory)
    registered = await service.register(_register_dto())
    await service.logout(registered.user.id)
    assert store.session_of(registered.user.id).is_revoked

    relogged = await service.login(LoginDTO(email="alice@example.com", password="Passw0rd"))

    assert store.session_of(registered.user.id).revoked_at is None
    assert (await service.refresh(relogged.refresh_token)).access_token


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password",
    [("alice@example.com", "WrongPass1"), ("nobody@example.com", "Passw0rd")],
)
async def test_login_failures_are_indistinguishable(uow_factory, email, password):
    service = AuthApplicationService(uow_factory)
    await service.register(_register_dto())

    with pytest.raises(InvalidCredentialsException) as exc:
        await service.login(LoginDTO(email=email, password=password))
    assert exc.value.message == "Invalid email or password"


@pytest.mark.asyncio
async def test_refresh_requires_a_token(uow_factory):
    service = AuthApplicationService(uow_factory)
    with pytest.raises(InvalidTokenException):
        await service.refresh(None)


@pytest.mark.asyncio
async def test_refresh_hides_unknown_principal(uow_factory):
    service = AuthApplicationService(uow_factory)
    orphan = service.token_service.create_refresh_token(777, "a" * 32, 1)

    with pytest.raises(InvalidTokenException):
        await service.refresh(orphan)


@pytest.mark.asyncio
async def test_logout_twice_succeeds(uow_factory):
    service = AuthApplicationService(uow_factory)
    registered = await service.register(_register_dto())

    await service.logout(registered.user.id)
    await service.logout(registered.user.id)

    with pytest.raises(SessionRevokedException):
        await service.refresh(registered.refresh_token)


@pytest.mark.asyncio
async def test_notification_failure_does_not_block_auth(uow_factory, store, failing_notifier):
    service = AuthApplicationService(uow_factory, notifier=failing_notifier)

    result = await service.register(_register_dto())

    assert result.user.id in store.users


@pytest.mark.asyncio
async def test_get_user(uow_factory):
    service = AuthApplicationService(uow_factory)
    registered = await service.register(_register_dto())

    user = await service.get_user(registered.user.id)
    assert user.username == "alice"
    with pytest.raises(UserNotFoundException):
        await service.get_user(999)


@pytest.mark.asyncio
async def test_verify_email_consumes_the_token(uow_factory, store, notifier):
    service = AuthApplicationService(uow_factory, notifier=notifier)
    registered = await service.register(_register_dto())
    token = notifier.sent[0][1][3]

    verified = await service.verify_email(token)

    assert verified.is_verified is True
    assert store.users[registered.user.id].is_verified is True
    assert store.users[registered.user.id].verification_token_hash is None
    # Session state is untouched by verification
    assert store.session_of(registered.user.id).token_version == 1
    with pytest.raises(InvalidVerificationTokenException):
        await service.verify_email(token)


@pytest.mark.asyncio
async def test_verify_email_rejects_unknown_token(uow_factory):
    service = AuthApplicationService(uow_factory)
    await service.register(_register_dto())

    with pytest.raises(InvalidVerificationTokenException):
        await service.verify_email("0" * 64)
