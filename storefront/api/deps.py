from typing import Any
from fastapi import Depends
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from redis import Redis
from storefront.db.session import SessionLocal
from storefront.db.models import User
from storefront.core.auth import get_current_identity
from storefront.core.config import settings
from storefront.core.errors import Unauthorized

def get_db():
    db = SessionLocal()
    try: yield db
    finally: db.close()

def redis_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)

def get_current_user(identity: dict = Depends(get_current_identity), db: Session = Depends(get_db)) -> User:
    user = db.query(User).filter(User.email == identity.get('sub')).first()
    if not user or not user.is_active: raise Unauthorized('User not found')
    return user

def ok(data: Any = None, message: str | None = None) -> dict:
    """Success envelope shared by every endpoint."""
    body: dict = {'status': 'success'}
    if data is not None: body['data'] = jsonable_encoder(data)
    if message: body['message'] = message
    return body
