from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from storefront.core.errors import Unauthorized, Forbidden
from storefront.security.utils import decode_token

security = HTTPBearer(auto_error=False)

STAFF_ROLES = ("support", "manager", "admin")


def _identity_from_credentials(creds: HTTPAuthorizationCredentials) -> dict:
    try:
        payload = decode_token(creds.credentials)
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired. Please log in again.")
    except jwt.PyJWTError:
        raise Unauthorized("Invalid token")
    if payload.get("type") != "access":
        raise Unauthorized("Invalid access token")
    return payload


def get_current_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    if not creds:
        raise Unauthorized("Not authenticated")
    return _identity_from_credentials(creds)  # contains sub (email), uid, role


def get_optional_identity(creds: HTTPAuthorizationCredentials = Depends(security)) -> dict | None:
    """Identity for endpoints that also serve guests (the cart)."""
    if not creds:
        return None
    return _identity_from_credentials(creds)


def require_roles(*roles: str):
    def _checker(identity: dict = Depends(get_current_identity)) -> dict:
        if identity.get("role") not in roles:
            raise Forbidden("You do not have permission to perform this action")
        return identity
    return _checker


require_admin = require_roles("admin")
require_staff = require_roles(*STAFF_ROLES)
