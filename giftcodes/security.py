from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JWTError

ADMIN_SCOPE = "giftcodes:admin"
ALGORITHM = "HS256"


def mint_admin_token(subject: str, secret: str, ttl_minutes: int = 60) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    return jwt.encode({"sub": subject, "scope": ADMIN_SCOPE, "exp": exp}, secret, algorithm=ALGORITHM)


def verify_admin_token(token: str, secret: str) -> dict:
    try:
        # exp is checked below so an expired token gets its own reason code
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"verify_exp": False})
    except JWTError:
        raise ValueError("INVALID_TOKEN")

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise ValueError("EXPIRED")

    if not payload.get("sub"):
        raise ValueError("INVALID_TOKEN")
    if payload.get("scope") != ADMIN_SCOPE:
        raise ValueError("FORBIDDEN")

    return payload
