from datetime import datetime, timedelta, timezone
import os
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

DEFAULT_ALGORITHM = "HS256"
DEFAULT_JWT_ISSUER = "medeasy-storefront"
ACCESS_TOKEN_TYPE = "access"
ADMIN_ROLES = {"ADMIN", "SUPER_ADMIN"}


def _required_env(name: str, default: str = "") -> str:
    value = os.getenv(name, default).strip()
    if not value:
        raise RuntimeError(f"{name} is required")
    return value


def get_jwt_settings() -> dict:
    """Token settings shared with the auth provider that issues customer/admin tokens."""
    access_minutes = int(_required_env("ACCESS_TOKEN_EXPIRE_MINUTES"))
    if access_minutes <= 0:
        raise RuntimeError("ACCESS_TOKEN_EXPIRE_MINUTES must be greater than 0")

    return {
        "secret_key": _required_env("JWT_SECRET"),
        "algorithm": _required_env("JWT_ALGORITHM", DEFAULT_ALGORITHM),
        "issuer": _required_env("JWT_ISSUER", DEFAULT_JWT_ISSUER),
        "audience": os.getenv("JWT_AUDIENCE", "").strip() or None,
        "access_token_expire_minutes": access_minutes,
    }


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token the way the auth provider does (used by scripts and tests)."""
    settings = get_jwt_settings()
    if "sub" not in data:
        raise ValueError("Token payload is missing subject")

    issued_at = datetime.now(timezone.utc)
    lifetime = (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings["access_token_expire_minutes"])
    )
    claims = {
        **data,
        "sub": str(data["sub"]),
        "type": data.get("type", ACCESS_TOKEN_TYPE),
        "iss": data.get("iss", settings["issuer"]),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    if settings["audience"] and "aud" not in claims:
        claims["aud"] = settings["audience"]
    return jwt.encode(claims, settings["secret_key"], algorithm=settings["algorithm"])


def decode_access_token(token: str) -> dict:
    settings = get_jwt_settings()
    try:
        claims = jwt.decode(
            token,
            settings["secret_key"],
            algorithms=[settings["algorithm"]],
            issuer=settings["issuer"],
            audience=settings["audience"],
            options={"verify_aud": settings["audience"] is not None},
        )
    except ExpiredSignatureError as exc:
        raise ValueError("Token expired") from exc
    except JWTError as exc:
        raise ValueError("Invalid token") from exc

    if str(claims.get("type", "")).strip().lower() != ACCESS_TOKEN_TYPE:
        raise ValueError("Invalid token type")
    if not str(claims.get("sub", "")).strip():
        raise ValueError("Token payload is missing subject")
    return claims


def is_admin_claims(claims: dict) -> bool:
    if claims.get("is_admin") is True:
        return True
    return str(claims.get("role", "")).strip().upper() in ADMIN_ROLES
