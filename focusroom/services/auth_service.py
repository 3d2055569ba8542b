import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom.config import settings
from focusroom.models.user import User


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


async def register_user(
    db: AsyncSession,
    email: str,
    password: str,
    username: str | None = None,
) -> User:
    """Create an account and its zeroed stats profile."""
    email = email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise ValueError("An account with this email already exists")

    user = User(
        id=uuid.uuid4(),
        email=email,
        username=username or email.split("@")[0],
        password_hash=hash_password(password),
        total_hours=0.0,
        violations=0,
        sessions_completed=0,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


async def login_with_email(db: AsyncSession, email: str, password: str) -> User:
    result = await db.execute(select(User).where(User.email == email.lower()))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash):
        raise ValueError("Invalid email or password")

    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def _encode(user_id: str | uuid.UUID, token_type: str, lifetime: timedelta, **claims) -> str:
    issued = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "type": token_type, "iat": issued, "exp": issued + lifetime, **claims}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise ValueError("Invalid or expired token")

    if payload.get("type") != expected_type:
        raise ValueError(f"Expected a {expected_type} token")
    return payload


def issue_tokens(user_id: str | uuid.UUID) -> dict:
    """Access token plus a single-use refresh token (tracked by its jti)."""
    access_lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return {
        "access_token": _encode(user_id, "access", access_lifetime),
        "refresh_token": _encode(
            user_id, "refresh",
            timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            jti=uuid.uuid4().hex,
        ),
        "token_type": "bearer",
        "expires_in": int(access_lifetime.total_seconds()),
    }


def _subject(payload: dict) -> uuid.UUID:
    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise ValueError("Invalid token subject")


def decode_token(token: str, expected_type: str) -> uuid.UUID:
    """Validate a token of the given type and return its user id."""
    return _subject(_decode(token, expected_type))


async def revoke_refresh_token(refresh_token: str, redis_client) -> uuid.UUID:
    """Burn a refresh token so it can never be used again. Returns its user id."""
    payload = _decode(refresh_token, "refresh")
    user_id = _subject(payload)

    revoked_key = f"revoked_refresh:{payload.get('jti')}"
    if await redis_client.get(revoked_key):
        raise ValueError("Refresh token has been revoked")
    await redis_client.setex(revoked_key, settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400, "1")
    return user_id


async def refresh_tokens(refresh_token: str, redis_client) -> dict:
    """Trade a refresh token for a new pair. Each refresh token works once."""
    return issue_tokens(await revoke_refresh_token(refresh_token, redis_client))
