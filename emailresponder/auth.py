"""Verification of ID tokens issued by the hosted identity provider.

With ``IDENTITY_JWKS_URL`` set, tokens are RS256 and checked against the
provider's published keys; otherwise they are HS256 with
``IDENTITY_JWT_SECRET`` (local development and tests).
"""
import jwt
from functools import lru_cache
from .config import Settings


class IdentityError(Exception):
    pass


@lru_cache(maxsize=4)
def _jwks_client(url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(url, cache_keys=True)


def decode_identity_token(token: str, settings: Settings) -> dict:
    options = {"require": ["sub", "exp"]}
    kwargs = {}
    if settings.identity_audience:
        kwargs["audience"] = settings.identity_audience
    else:
        options["verify_aud"] = False
    if settings.identity_issuer:
        kwargs["issuer"] = settings.identity_issuer

    try:
        if settings.identity_jwks_url:
            key = _jwks_client(settings.identity_jwks_url).get_signing_key_from_jwt(token).key
            algorithms = ["RS256"]
        else:
            key = settings.identity_jwt_secret
            algorithms = ["HS256"]
        claims = jwt.decode(token, key, algorithms=algorithms, options=options, **kwargs)
    except jwt.PyJWTError as exc:
        raise IdentityError(str(exc)) from exc

    if not str(claims.get("sub") or "").strip():
        raise IdentityError("token has no subject")
    return claims
