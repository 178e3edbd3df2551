import os
import secrets
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from loguru import logger
from passlib.context import CryptContext
from sqlmodel import select

from db import SessionDep
from errors import IdentityError
from identity import Caller, load_user, resolve_caller
from models import User
from schemas import LoginData, UserCreate, UserRead

router = APIRouter(tags=["auth"])

SESSION_COOKIE = "session"
SECRET_KEY = os.getenv("SESSION_SECRET") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 8)))
serializer = URLSafeTimedSerializer(SECRET_KEY)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int) -> str:
    """
    Store the user id in the signed token.
    Example data:
        {"user_id": 3}
    The role is read from the user record on every request, never from the token.
    """
    return serializer.dumps({"user_id": user_id})


def verify_session_token(token: str, max_age_seconds: int = SESSION_MAX_AGE) -> Optional[int]:
    """
    Returns the user id if the token is valid,
    or None if it is invalid/expired.
    """
    try:
        data = serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None
    user_id = data.get("user_id") if isinstance(data, dict) else None
    return user_id if isinstance(user_id, int) else None


def get_current_caller(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> Caller:
    """
    Reads the 'session' cookie, verifies the token and resolves the caller.
    Raises IdentityError (401) if not logged in, expired, unknown or inactive.
    """
    if session_token is None:
        raise IdentityError("Not logged in")

    user_id = verify_session_token(session_token)
    if user_id is None:
        raise IdentityError("Invalid or expired session")

    return resolve_caller(session, user_id)


CallerDep = Annotated[Caller, Depends(get_current_caller)]


def _set_session_cookie(response: Response, user_id: int) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_session_token(user_id),
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )


@router.post("/register", response_model=UserRead, status_code=201)
def register(user_in: UserCreate, session: SessionDep, response: Response):
    """
    Register a new donor or receiver with a hashed password
    and log them in.
    """
    existing = session.exec(
        select(User).where(User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=user_in.email,
        name=user_in.name,
        role=user_in.role,
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)

    _set_session_cookie(response, user.id)
    logger.info("Registered user {} as {}", user.id, user.role.value)
    return user


@router.post("/login", response_model=UserRead)
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in with email + password and set a signed cookie.
    """
    user = session.exec(
        select(User).where(User.email == payload.email)
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid email or password")

    if not user.is_active:
        raise IdentityError("User account is inactive")

    _set_session_cookie(response, user.id)
    return user


@router.post("/logout", status_code=204)
def logout():
    """
    Clear the session cookie.
    """
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@router.get("/me", response_model=UserRead)
def read_me(caller: CallerDep, session: SessionDep):
    """
    Get info about the currently logged-in user.
    """
    return load_user(session, caller.user_id)
