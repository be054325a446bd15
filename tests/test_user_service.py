"""
UserService tests against an in-memory repository.

The service only depends on the ``UserRepository`` contract, so these run
without a database.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import (
    EmailExists,
    InvalidCredentials,
    ResendRateLimited,
    UserNotFound,
    UsernameExists,
    ValidationError,
)
from app.core.rate_limit import ResendRateLimiter
from app.core.security import PasswordHasher
from app.models.user import User, UserRole
from app.repositories.user import PROFILE_FIELDS, UserRepository
from app.services.user import UserService


class InMemoryUserRepository(UserRepository):
    def __init__(self, hasher: PasswordHasher) -> None:
        self.hasher = hasher
        self.users: dict[uuid.UUID, User] = {}
        self.access_writes: list[tuple] = []

    async def create(self, request):
        if await self.find_by_username(request.username):
            raise UsernameExists()
        if await self.find_by_email(request.email):
            raise EmailExists()
        now = datetime.now(timezone.utc)
        user = User(
            id=uuid.uuid4(),
            username=request.username,
            email=request.email.lower(),
            password_hash=self.hasher.hash(request.password),
            display_name=request.display_name,
            role=UserRole.SUBSCRIBER,
            is_active=True,
            email_verified=False,
            created_at=now,
            updated_at=now,
        )
        self.users[user.id] = user
        return user

    async def find_by_id(self, user_id):
        return self.users.get(user_id)

    async def find_by_username(self, username):
        return next((u for u in self.users.values() if u.username == username), None)

    async def find_by_email(self, email):
        email = email.strip().lower()
        return next((u for u in self.users.values() if u.email == email), None)

    async def find_by_username_or_email(self, username_or_email):
        return await self.find_by_username(username_or_email) or await self.find_by_email(username_or_email)

    async def update(self, user_id, fields):
        assert set(fields) <= PROFILE_FIELDS
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound()
        for key, value in fields.items():
            setattr(user, key, value)
        return user

    async def verify_password(self, user, password):
        return self.hasher.verify(password, user.password_hash)

    async def change_password(self, user_id, new_password):
        self.users[user_id].password_hash = self.hasher.hash(new_password)

    async def set_email_verification_token(self, user_id, token, expires_at):
        user = self.users[user_id]
        user.email_verification_token = token
        user.email_verification_expires_at = expires_at

    async def verify_email(self, token):
        now = datetime.now(timezone.utc)
        for user in self.users.values():
            if user.email_verification_token == token and user.email_verification_expires_at > now:
                user.email_verified = True
                user.email_verification_token = None
                user.email_verification_expires_at = None
                return user
        return None

    async def set_password_reset_token(self, user_id, token, expires_at):
        user = self.users[user_id]
        user.password_reset_token = token
        user.password_reset_expires_at = expires_at

    async def reset_password(self, token, new_password):
        now = datetime.now(timezone.utc)
        for user in self.users.values():
            if user.password_reset_token == token and user.password_reset_expires_at > now:
                user.password_hash = self.hasher.hash(new_password)
                user.password_reset_token = None
                user.password_reset_expires_at = None
                return user
        return None

    async def set_access(self, user_id, *, role=None, is_active=None):
        self.access_writes.append((user_id, role, is_active))
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound()
        if role is not None:
            user.role = role
        if is_active is not None:
            user.is_active = is_active
        return user


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository(hasher: PasswordHasher) -> InMemoryUserRepository:
    return InMemoryUserRepository(hasher)


@pytest.fixture
def service(repository, hasher, mailer, clock) -> UserService:
    return UserService(
        repository=repository,
        hasher=hasher,
        resend_limiter=ResendRateLimiter(cooldown_seconds=60, clock=clock),
        mailer=mailer,
    )


async def _verified_user(service: UserService, username: str = "alice", email: str = "alice@example.com"):
    user = await service.register({"username": username, "email": email, "password": "password123"})
    assert await service.verify_email(await service.set_verification_token(user.id))
    return user


# ── Registration ────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_register_creates_unverified_subscriber(service: UserService):
    user = await service.register(
        {"username": "alice", "email": "Alice@Example.com", "password": "password123", "display_name": "Alice"}
    )
    assert user.role == UserRole.SUBSCRIBER
    assert user.email == "alice@example.com"
    assert user.is_active is True
    assert user.email_verified is False


@pytest.mark.asyncio
async def test_register_validates_before_touching_storage(service: UserService, repository):
    with pytest.raises(ValidationError) as exc:
        await service.register({"username": "a", "email": "a@example.com", "password": "password123"})
    assert "Username must be 3-50 characters" in exc.value.message
    assert repository.users == {}


@pytest.mark.asyncio
async def test_register_duplicate_username(service: UserService):
    await service.register({"username": "alice", "email": "a1@example.com", "password": "password123"})
    with pytest.raises(UsernameExists):
        await service.register({"username": "alice", "email": "a2@example.com", "password": "password123"})


# ── Login ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_with_username_or_email(service: UserService):
    await _verified_user(service)
    by_name = await service.login({"username_or_email": "alice", "password": "password123"})
    by_email = await service.login({"username_or_email": "ALICE@example.com", "password": "password123"})
    assert by_name.id == by_email.id
    assert by_name.role == UserRole.SUBSCRIBER


@pytest.mark.asyncio
async def test_login_unknown_user_still_spends_a_verification(service: UserService, hasher, monkeypatch):
    calls = []
    original = hasher.dummy_verify

    def spy(plain):
        calls.append(plain)
        return original(plain)

    monkeypatch.setattr(hasher, "dummy_verify", spy)
    with pytest.raises(InvalidCredentials):
        await service.login({"username_or_email": "ghost", "password": "password123"})
    assert calls == ["password123"]


@pytest.mark.asyncio
async def test_login_rejects_unverified_and_inactive_alike(service: UserService):
    user = await service.register({"username": "bob", "email": "bob@example.com", "password": "password123"})
    with pytest.raises(InvalidCredentials) as unverified:
        await service.login({"username_or_email": "bob", "password": "password123"})

    await service.verify_email(await service.set_verification_token(user.id))
    await service.admin_update(user.id, {"is_active": False})
    with pytest.raises(InvalidCredentials) as inactive:
        await service.login({"username_or_email": "bob", "password": "password123"})

    assert unverified.value.message == inactive.value.message == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_requires_fields(service: UserService):
    with pytest.raises(ValidationError):
        await service.login({"username_or_email": "   ", "password": "x"})
    with pytest.raises(ValidationError):
        await service.login({"username_or_email": "alice", "password": ""})


# ── Profile & password ──────────────────────────────────────────────
@pytest.mark.asyncio
async def test_update_profile_unknown_user(service: UserService):
    with pytest.raises(UserNotFound):
        await service.update_profile(uuid.uuid4(), {"bio": "hi"})


@pytest.mark.asyncio
async def test_get_user_unknown(service: UserService):
    with pytest.raises(UserNotFound):
        await service.get_user(uuid.uuid4())


@pytest.mark.asyncio
async def test_change_password_checks_current(service: UserService):
    user = await _verified_user(service)
    with pytest.raises(InvalidCredentials):
        await service.change_password(user.id, {"current_password": "nope-nope", "new_password": "password456"})

    await service.change_password(user.id, {"current_password": "password123", "new_password": "password456"})
    await service.login({"username_or_email": "alice", "password": "password456"})


# ── Verification & resend ───────────────────────────────────────────
@pytest.mark.asyncio
async def test_verification_token_consumed_once(service: UserService):
    user = await service.register({"username": "cat", "email": "cat@example.com", "password": "password123"})
    token = await service.set_verification_token(user.id)
    assert await service.verify_email(token) is True
    assert await service.verify_email(token) is False
    assert (await service.get_user(user.id)).email_verified is True


@pytest.mark.asyncio
async def test_expired_verification_token(service: UserService, repository):
    user = await service.register({"username": "dan", "email": "dan@example.com", "password": "password123"})
    token = await service.set_verification_token(user.id)
    repository.users[user.id].email_verification_expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    assert await service.verify_email(token) is False


@pytest.mark.asyncio
async def test_resend_cooldown_per_email(service: UserService, mailer, clock):
    await service.register({"username": "eve", "email": "eve@example.com", "password": "password123"})

    await service.resend_verification("eve@example.com")
    assert len(mailer.verifications) == 1

    clock.now += 30
    with pytest.raises(ResendRateLimited) as exc:
        await service.resend_verification("EVE@example.com")
    assert exc.value.status_code == 429
    assert isinstance(exc.value, ValidationError)

    # A different address has its own window
    await service.resend_verification("someone-else@example.com")

    clock.now += 31
    await service.resend_verification("eve@example.com")
    assert len(mailer.verifications) == 2


@pytest.mark.asyncio
async def test_injected_collaborators_are_kept_even_when_empty(repository, hasher, mailer, clock):
    limiter = ResendRateLimiter(cooldown_seconds=60, clock=clock)
    assert len(limiter) == 0

    service = UserService(repository=repository, hasher=hasher, resend_limiter=limiter, mailer=mailer)
    assert service.resend_limiter is limiter
    assert service.mailer is mailer

    await service.resend_verification("frank@example.com")
    clock.now += 59
    with pytest.raises(ResendRateLimited):
        await service.resend_verification("frank@example.com")
    assert len(limiter) == 1


@pytest.mark.asyncio
async def test_resend_is_throttled_even_for_unknown_addresses(service: UserService, mailer):
    await service.resend_verification("ghost@example.com")
    with pytest.raises(ResendRateLimited):
        await service.resend_verification("ghost@example.com")
    assert mailer.verifications == []


@pytest.mark.asyncio
async def test_resend_rejects_malformed_email(service: UserService):
    with pytest.raises(ValidationError) as exc:
        await service.resend_verification("not-an-email")
    assert not isinstance(exc.value, ResendRateLimited)


# ── Password reset ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_password_reset(service: UserService, mailer):
    await _verified_user(service)
    await service.request_password_reset("alice@example.com")
    token = mailer.last_reset_token("alice@example.com")

    assert await service.reset_password({"token": token, "new_password": "reset-pass-1"}) is True
    assert await service.reset_password({"token": token, "new_password": "reset-pass-2"}) is False
    await service.login({"username_or_email": "alice", "password": "reset-pass-1"})


# ── Administration ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_admin_update(service: UserService):
    user = await _verified_user(service)
    updated = await service.admin_update(user.id, {"role": "editor", "is_active": False})
    assert updated.role == UserRole.EDITOR
    assert updated.is_active is False

    with pytest.raises(UserNotFound):
        await service.admin_update(uuid.uuid4(), {"role": "admin"})
    with pytest.raises(ValidationError):
        await service.admin_update(user.id, {"role": "overlord"})


@pytest.mark.asyncio
async def test_admin_update_writes_role_and_activation_together(service: UserService, repository):
    user = await _verified_user(service)
    repository.access_writes.clear()

    await service.admin_update(user.id, {"role": "author", "is_active": False})
    assert repository.access_writes == [(user.id, UserRole.AUTHOR, False)]

