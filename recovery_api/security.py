import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JWTError

from .errors import Unauthorized


@dataclass(frozen=True)
class Caller:
    email: str
    role: str = "user"


def mint_access_token(email: str, role: str, secret: str, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {
        "sub": email,
        "email": email,
        "role": role,
        "jti": str(uuid.uuid4()),
        "exp": exp,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_access_token(token: str, secret: str) -> Caller:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError:
        raise Unauthorized()

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise Unauthorized()

    email = payload.get("email") or payload.get("sub")
    if not email:
        raise Unauthorized()

    return Caller(email=email, role=payload.get("role", "user"))
