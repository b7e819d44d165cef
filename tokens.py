import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import Settings, get_settings
from errors import TokenInvalid
from models import User

ISSUER = "expense-tracker-api"
AUDIENCE = "expense-tracker-client"
TOKEN_TYPE = "Bearer"


def _serializer(settings: Settings) -> URLSafeSerializer:
    return URLSafeSerializer(settings.token_secret, salt="auth-token")


def _sign(claims: dict, ttl_secs: int, settings: Settings) -> str:
    issued_at = int(time.time())
    payload = {
        **claims,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + ttl_secs,
    }
    return _serializer(settings).dumps(payload)


def generate_access_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    claims = {"userId": user.id, "username": user.username, "email": user.email}
    return _sign(claims, settings.access_token_ttl_secs, settings)


def generate_refresh_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    claims = {"userId": user.id, "type": "refresh"}
    return _sign(claims, settings.refresh_token_ttl_secs, settings)


def generate_token_pair(user: User, settings: Optional[Settings] = None) -> dict:
    settings = settings or get_settings()
    return {
        "accessToken": generate_access_token(user, settings),
        "refreshToken": generate_refresh_token(user, settings),
        "tokenType": TOKEN_TYPE,
    }


def _decode(token: str, settings: Settings) -> dict:
    try:
        data = _serializer(settings).loads(token)
    except BadSignature as exc:
        raise TokenInvalid("Invalid token") from exc

    if not isinstance(data, dict) or "userId" not in data:
        raise TokenInvalid("Invalid token")
    if data.get("iss") != ISSUER or data.get("aud") != AUDIENCE:
        raise TokenInvalid("Invalid token")
    if int(time.time()) > int(data.get("exp", 0)):
        raise TokenInvalid("Token expired")
    return data


def verify_token(token: str, settings: Optional[Settings] = None) -> dict:
    """Return the claims of a token signed by this service.

    The ``type`` claim is only enforced when ``strict_token_types`` is on, so
    by default a refresh token is accepted wherever an access token is.
    """
    settings = settings or get_settings()
    data = _decode(token, settings)
    if settings.strict_token_types and data.get("type") == "refresh":
        raise TokenInvalid("Refresh token cannot be used for API access")
    return data


def verify_refresh_token(token: str, settings: Optional[Settings] = None) -> dict:
    data = _decode(token, settings or get_settings())
    if data.get("type") != "refresh":
        raise TokenInvalid("Refresh token required")
    return data
