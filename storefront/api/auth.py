from fastapi import APIRouter, Depends, status
from loguru import logger
from sqlalchemy.orm import Session
import jwt

from storefront.api.deps import get_db, get_current_user, ok
from storefront.core.errors import Conflict, Unauthorized
from storefront.db.models import RefreshToken, Role, User
from storefront.schemas import LoginPayload, ProfileUpdate, RefreshRequest, RegisterPayload, TokenPair, UserRead
from storefront.security.utils import (
    create_access_token, create_refresh_token, decode_token, hash_password, now_utc, token_sha256, verify_password,
)
from storefront.services import loyalty

router = APIRouter()  # mounted at /api/auth
users_router = APIRouter()  # mounted at /api/users


def _issue_tokens(db: Session, user: User) -> TokenPair:
    access, _ = create_access_token(user.email, user.role, user.id)
    refresh, jti, exp = create_refresh_token(user.email)
    db.add(RefreshToken(user_id=user.id, jti=jti, token_hash=token_sha256(refresh), expires_at=exp,
                        revoked=False, created_at=now_utc()))
    db.commit()
    return TokenPair(access_token=access, refresh_token=refresh)


def _refresh_claims(token: str) -> dict:
    try:
        claims = decode_token(token)
    except jwt.PyJWTError:
        raise Unauthorized("Invalid refresh token")
    if claims.get("type") != "refresh" or not claims.get("jti"):
        raise Unauthorized("Invalid refresh token")
    return claims


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == str(payload.email)).first():
        raise Conflict("Email already registered")
    user = User(
        email=str(payload.email),
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        role=Role.CUSTOMER.value,
        created_at=now_utc(),
        updated_at=now_utc(),
    )
    db.add(user); db.commit(); db.refresh(user)
    logger.info(f"registered user {user.id}")
    return ok({"user": UserRead.model_validate(user), "tokens": _issue_tokens(db, user)})


@router.post("/login")
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == str(payload.email)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    if not user.is_active:
        raise Unauthorized("Account is disabled")
    return ok({"user": UserRead.model_validate(user), "tokens": _issue_tokens(db, user)})


@router.post("/refresh")
def refresh_token(payload: RefreshRequest, db: Session = Depends(get_db)):
    claims = _refresh_claims(payload.refresh_token)
    rt = (
        db.query(RefreshToken)
        .join(User)
        .filter(RefreshToken.jti == claims["jti"], User.email == claims.get("sub"))
        .first()
    )
    if not rt or rt.revoked or rt.expires_at < now_utc() or rt.token_hash != token_sha256(payload.refresh_token):
        raise Unauthorized("Refresh token not valid")
    rt.revoked = True
    return ok(_issue_tokens(db, rt.user))


@router.post("/logout")
def logout(payload: RefreshRequest, db: Session = Depends(get_db)):
    claims = _refresh_claims(payload.refresh_token)
    rt = db.query(RefreshToken).filter(RefreshToken.jti == claims["jti"]).first()
    if rt and not rt.revoked:
        rt.revoked = True
        db.commit()
    return ok(message="Logged out")


@users_router.get("/me")
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok({"user": UserRead.model_validate(user),
               "loyalty": loyalty.loyalty_summary(user, loyalty.load_config_rows(db))})


@users_router.patch("/me")
def update_me(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(user, k, v)
    db.commit(); db.refresh(user)
    return ok(UserRead.model_validate(user))
