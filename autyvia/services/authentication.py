import os
import uuid
import secrets
import logging
from dataclasses import dataclass
from typing import Annotated, Awaitable, Callable, List, Optional
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from fastapi import Depends, Request, Response
from pydantic import BaseModel, EmailStr, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from autyvia.database.db import SessionDep
from autyvia.database.db_schema import AuthIdentity, RevokedToken
from autyvia.services.errors import (
    AuthError,
    InvalidCredentialsError,
    UserAlreadyRegisteredError,
    WeakPasswordError,
)

logger = logging.getLogger(__name__)

# --- JWT Configuration
SECRET_KEY = os.environ.get("SECRET_KEY", secrets.token_hex(32))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
JWT_COOKIE_NAME = "access_token"
COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

MIN_PASSWORD_LENGTH = 6

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


# --- Password Hasher ---
class PasswordHasher:
    """Utility class for hashing and verifying passwords."""
    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt"""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(plain_password: str, hashed: str) -> bool:
        """Verify a password against its hash"""
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed.encode("utf-8"),
        )


# --- JWT Utility Functions ---

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Creates a JWT with the user data, a unique id and expiration."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict:
    """Decode and verify signature and expiry. Raises JWTError."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if not payload.get("sub") or not payload.get("jti"):
        raise JWTError("Token payload is missing 'sub' or 'jti'")
    return payload


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user_id: str
    email: str
    expires_at: datetime


def _session_for(identity: AuthIdentity) -> AuthSession:
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(
        data={"sub": identity.id, "email": identity.email}, expires_delta=expires_delta
    )
    return AuthSession(
        access_token=token,
        user_id=identity.id,
        email=identity.email,
        expires_at=datetime.now(timezone.utc) + expires_delta,
    )


class _Credentials(BaseModel):
    email: EmailStr
    password: str


AuthListener = Callable[[str, Optional[AuthSession]], Awaitable[None]]


class Subscription:
    """Handle returned by `AuthClient.on_auth_state_change`."""

    def __init__(self, listeners: List[AuthListener], callback: AuthListener):
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)

    @property
    def active(self) -> bool:
        return self._callback in self._listeners


class AuthClient:
    """
    Client handle to the auth subsystem for one browser.

    Holds at most one session, restored from the access token the browser sent.
    Listeners registered with `on_auth_state_change` are awaited in order on
    every sign-in and sign-out.
    """

    def __init__(self, db: AsyncSession, access_token: Optional[str] = None):
        self._db = db
        self._access_token = access_token
        self._session: Optional[AuthSession] = None
        self._listeners: List[AuthListener] = []

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    async def get_session(self) -> Optional[AuthSession]:
        """Current session, restored once from the browser's token if it is still valid."""
        if self._session is not None:
            return self._session
        if not self._access_token:
            return None

        token, self._access_token = self._access_token, None
        try:
            payload = decode_access_token(token)
        except JWTError as exc:
            logger.debug("Discarding stored access token: %s", exc)
            return None

        if await self._db.get(RevokedToken, payload["jti"]) is not None:
            logger.debug("Discarding revoked access token for %s", payload["sub"])
            return None
        identity = await self._db.get(AuthIdentity, payload["sub"])
        if identity is None:
            return None

        self._session = AuthSession(
            access_token=token,
            user_id=identity.id,
            email=identity.email,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Verify email and password, then notify listeners with SIGNED_IN."""
        email = (email or "").strip().lower()
        result = await self._db.exec(select(AuthIdentity).where(AuthIdentity.email == email))
        identity = result.one_or_none()

        if identity is None or not password or not PasswordHasher.verify_password(password, identity.password):
            raise InvalidCredentialsError()

        self._session = _session_for(identity)
        logger.info("Signed in %s", identity.id)
        await self._notify(SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str) -> AuthSession:
        """Create an identity and sign it in straight away."""
        try:
            credentials = _Credentials(email=(email or "").strip().lower(), password=password or "")
        except ValidationError:
            raise AuthError("Unable to validate email address: invalid format")
        if len(credentials.password) < MIN_PASSWORD_LENGTH:
            raise WeakPasswordError()

        existing = await self._db.exec(
            select(AuthIdentity).where(AuthIdentity.email == credentials.email)
        )
        if existing.one_or_none() is not None:
            raise UserAlreadyRegisteredError()

        identity = AuthIdentity(
            email=credentials.email,
            password=PasswordHasher.hash_password(credentials.password),
        )
        self._db.add(identity)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            raise UserAlreadyRegisteredError()
        await self._db.refresh(identity)

        self._session = _session_for(identity)
        logger.info("Registered auth identity %s", identity.id)
        await self._notify(SIGNED_IN, self._session)
        return self._session

    async def sign_out(self) -> None:
        """Revoke the current token. Listeners hear SIGNED_OUT even if that fails."""
        session, self._session = self._session, None
        self._access_token = None
        try:
            if session is not None:
                payload = decode_access_token(session.access_token)
                self._db.add(RevokedToken(jti=payload["jti"]))
                await self._db.commit()
        finally:
            await self._notify(SIGNED_OUT, None)

    async def delete_identity(self, user_id: str) -> None:
        """Admin operation: remove an identity (used to undo a failed sign-up)."""
        identity = await self._db.get(AuthIdentity, user_id)
        if identity is not None:
            await self._db.delete(identity)
            await self._db.commit()
        if self._session is not None and self._session.user_id == user_id:
            self._session = None
        logger.info("Deleted auth identity %s", user_id)

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        """Register a listener for sign-in and sign-out events."""
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    async def _notify(self, event: str, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            await listener(event, session)


# --- Utility to set cookie ---

def set_auth_cookie(response: Response, session: AuthSession):
    """Sets the JWT cookie of a freshly issued session on the response."""
    response.set_cookie(
        key=JWT_COOKIE_NAME,
        value=session.access_token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="Lax",
        expires=int(session.expires_at.timestamp())
    )
    return response


def clear_auth_cookie(response: Response):
    response.delete_cookie(key=JWT_COOKIE_NAME)
    return response


# --- Authentication Dependencies ---

async def get_access_token(request: Request) -> Optional[str]:
    """Reads the JWT from the Authorization header (API calls) or the cookie (browser)."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return request.cookies.get(JWT_COOKIE_NAME)


async def get_auth_client(
    session: SessionDep,
    access_token: Annotated[Optional[str], Depends(get_access_token)],
) -> AuthClient:
    """Dependency to get the auth client bound to this request's token."""
    return AuthClient(session, access_token)


AuthDep = Annotated[AuthClient, Depends(get_auth_client)]
