import jwt
from datetime import datetime, timedelta, timezone
from bakeledger.config import settings
from bakeledger.services.identity import Identity

def create_token(sub: str, name: str | None = None, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.JWT_EXP_MIN)
    payload = {"sub": sub, "iss": settings.JWT_ISS, "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    if name:
        payload["name"] = name
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")

def decode_token(token: str) -> Identity:
    """Raises jwt.InvalidTokenError on a bad, expired or foreign token."""
    data = jwt.decode(token, settings.APP_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISS,
                      options={"verify_aud": False})
    return Identity(id=data["sub"], display_name=data.get("name"), email=data.get("email"))
