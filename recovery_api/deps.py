from typing import Optional

from fastapi import Depends, Header
from redis.asyncio import Redis

from .config import AUTH_TOKEN_SECRET, PUBLIC_BASE_URL, REDIS_URL
from .errors import Unauthorized
from .payments import PaymentGateway
from .policy import Capability, is_allowed
from .security import Caller, verify_access_token
from .store import PassStore

_redis: Optional[Redis] = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def get_gateway() -> PaymentGateway:
    return PaymentGateway()


def get_pass_store() -> PassStore:
    return PassStore()


def current_caller(authorization: Optional[str] = Header(default=None)) -> Optional[Caller]:
    """The authenticated caller, or None when no bearer token was sent."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized()
    return verify_access_token(token.strip(), AUTH_TOKEN_SECRET)


def authenticated_caller(caller: Optional[Caller] = Depends(current_caller)) -> Caller:
    if caller is None:
        raise Unauthorized()
    return caller


def require(capability: Capability):
    """Route dependency that admits only callers holding ``capability``."""

    def dependency(caller: Optional[Caller] = Depends(current_caller)) -> Caller:
        if not is_allowed(caller, capability):
            raise Unauthorized()
        return caller

    return dependency


def public_base_url(origin: Optional[str] = Header(default=None)) -> str:
    return (origin or PUBLIC_BASE_URL).rstrip("/")
