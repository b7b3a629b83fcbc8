"""
Clerk JWT verification.

Handles:
- JWT signature verification (HS256 secret in dev/test, RS256 via JWKS in prod)
- Issuer/audience validation
- Mapping claims to an Identity
- Test helpers for deterministic testing (no network)

Testing:
- Use create_test_jwt() to create test tokens
- Override JWKS fetch via set_jwks_provider_for_tests()
"""
import json
import time
from typing import Dict, Any, Optional, Callable

import httpx
import jwt

from mockinterview.core.config import settings
from mockinterview.models.user import Identity


# JWKS override (tests) and cache keyed by issuer/jwks_url
_jwks_provider_override: Optional[Callable[[str, str], Dict[str, Any]]] = None
_jwks_cache: Dict[str, Dict[str, Any]] = {}


def set_jwks_provider_for_tests(provider: Optional[Callable[[str, str], Dict[str, Any]]]) -> None:
    """Set or clear JWKS provider override for deterministic testing (no network)."""
    global _jwks_provider_override
    _jwks_provider_override = provider
    _jwks_cache.clear()


def _default_fetch_jwks(issuer: str, jwks_url: str) -> Dict[str, Any]:
    response = httpx.get(jwks_url, timeout=5.0)
    response.raise_for_status()
    return response.json()


def get_jwks(issuer: str, jwks_url: Optional[str] = None) -> Dict[str, Any]:
    """Fetch JWKS using override (tests) or default fetcher. Cached per issuer/url."""
    resolved_url = jwks_url or f"{issuer.rstrip('/')}/.well-known/jwks.json"
    cache_key = f"{issuer}|{resolved_url}"

    if cache_key in _jwks_cache:
        return _jwks_cache[cache_key]

    if _jwks_provider_override:
        jwks = _jwks_provider_override(issuer, resolved_url)
    else:
        jwks = _default_fetch_jwks(issuer, resolved_url)

    _jwks_cache[cache_key] = jwks
    return jwks


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify Clerk JWT and return claims.

    Raises jwt.PyJWTError on invalid token.

    Args:
        token: Raw JWT string (without "Bearer " prefix)

    Returns:
        Decoded claims dict with keys: sub, email, name, image_url, etc.
    """
    secret = settings.CLERK_SECRET_KEY
    if secret:
        # Symmetric verification (HS256) for development and tests
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )

    issuer = settings.CLERK_ISSUER
    jwks_url = settings.CLERK_JWKS_URL
    if not issuer and not jwks_url:
        raise jwt.PyJWTError("CLERK_ISSUER or CLERK_JWKS_URL must be configured for RS256 verification")

    jwks = get_jwks(issuer or "https://clerk.test", jwks_url)

    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise jwt.PyJWTError("Token missing 'kid' in header")

    matching_key = None
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            matching_key = key
            break

    if not matching_key:
        raise jwt.PyJWTError(f"Key ID '{kid}' not found in JWKS")

    from jwt.algorithms import RSAAlgorithm
    public_key = RSAAlgorithm.from_jwk(json.dumps(matching_key))

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=issuer,
        options={"verify_signature": True, "verify_exp": True},
    )


def identity_from_claims(claims: Dict[str, Any]) -> Identity:
    """Map Clerk session claims onto an Identity."""
    sub = claims.get("sub")
    if not sub:
        raise jwt.PyJWTError("No 'sub' claim in token")
    name = claims.get("name")
    if not name:
        parts = [claims.get("first_name"), claims.get("last_name")]
        name = " ".join(p for p in parts if p) or None
    return Identity(
        id=sub,
        email=claims.get("email"),
        name=name,
        image=claims.get("image_url") or claims.get("picture"),
    )


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "test@example.com",
    name: Optional[str] = None,
    image_url: Optional[str] = None,
    exp_minutes: int = 60,
    secret: str = "test-secret-key",
) -> str:
    """Create an HS256 test JWT signed with `secret`."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "iat": now,
        "exp": now + (exp_minutes * 60),
        "iss": settings.CLERK_ISSUER or "https://test.clerk.accounts.dev",
    }
    if name:
        payload["name"] = name
    if image_url:
        payload["image_url"] = image_url
    return jwt.encode(payload, secret, algorithm="HS256")
