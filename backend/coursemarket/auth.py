from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from psycopg import Error as DatabaseError

from .config import settings
from .logging_context import set_user_context
from .repositories import accounts as accounts_repo
from .utils.identity_jwt import IdentityJwtError, verify_provider_access_token

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
oauth2_optional_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

ROLE_LEARNER = "learner"
ROLE_CREATOR = "creator"
ROLE_ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Identity of the viewer for the duration of one request.

    Built once by the auth dependency and handed to every service, so no
    service looks identity or role up on its own.
    """

    user_id: str | None = None
    role: str = ROLE_LEARNER
    access_token: str | None = None
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_creator(self) -> bool:
        return self.role in {ROLE_CREATOR, ROLE_ADMIN}


ANONYMOUS = SessionContext()


def decode_jwt(token: str) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"verify_signature": True, "verify_exp": True},
    )


def _provider_jwks_url() -> str | None:
    if settings.supabase_jwks_url:
        return str(settings.supabase_jwks_url)
    if settings.supabase_url is None:
        return None
    base = settings.supabase_url.unicode_string().rstrip("/")
    return f"{base}/auth/v1/.well-known/jwks.json"


def _provider_issuer() -> str | None:
    if settings.supabase_jwt_issuer:
        return settings.supabase_jwt_issuer
    if settings.supabase_url is None:
        return None
    base = settings.supabase_url.unicode_string().rstrip("/")
    return f"{base}/auth/v1"


async def _decode_access_token(token: str) -> dict[str, Any]:
    try:
        return decode_jwt(token)
    except JWTError as exc:
        jwks_url = _provider_jwks_url()
        if not jwks_url:
            raise exc
        try:
            return await verify_provider_access_token(
                token, jwks_url=jwks_url, issuer=_provider_issuer()
            )
        except IdentityJwtError as provider_exc:
            raise JWTError("identity provider JWT verification failed") from provider_exc


def create_access_token(
    sub: str,
    expires_minutes: int = 15,
    *,
    claims: dict[str, Any] | None = None,
) -> str:
    """Issue a locally signed access token (development and tests)."""

    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode: dict[str, Any] = {"sub": sub, "exp": expire, "token_type": "access"}
    if claims:
        to_encode.update(claims)
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def _session_from_token(token: str) -> SessionContext | None:
    try:
        payload = await _decode_access_token(token)
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id or payload.get("token_type", "access") != "access":
        return None
    account = await accounts_repo.get_account(user_id)
    if not account:
        return None
    session = SessionContext(
        user_id=str(account["id"]),
        role=(account.get("role") or ROLE_LEARNER).lower(),
        access_token=token,
        email=account.get("email"),
    )
    set_user_context(session.user_id)
    return session


async def get_current_session(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> SessionContext:
    try:
        session = await _session_from_token(token)
    except DatabaseError as exc:
        logger.warning("Account lookup failed for authenticated request", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="account store unavailable",
        ) from exc
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def get_optional_session(
    token: Annotated[str | None, Depends(oauth2_optional_scheme)],
) -> SessionContext:
    if not token:
        return ANONYMOUS
    try:
        session = await _session_from_token(token)
    except DatabaseError:
        logger.warning("Account lookup failed; treating viewer as anonymous", exc_info=True)
        return ANONYMOUS
    return session or ANONYMOUS


async def get_creator_session(
    session: Annotated[SessionContext, Depends(get_current_session)],
) -> SessionContext:
    if not session.is_creator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="creator role required")
    return session


async def get_admin_session(
    session: Annotated[SessionContext, Depends(get_current_session)],
) -> SessionContext:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin role required")
    return session


CurrentSession = Annotated[SessionContext, Depends(get_current_session)]
OptionalSession = Annotated[SessionContext, Depends(get_optional_session)]
CreatorSession = Annotated[SessionContext, Depends(get_creator_session)]
AdminSession = Annotated[SessionContext, Depends(get_admin_session)]
