"""Authentication and Authorization for the Secure MCP Server.

Handles:
- Bearer token validation against the identity authority
- Delegated scope checks on the validated claims

Validation runs its checks in a fixed order (presence, structure,
signature, issuer, audience, expiry) so every rejection maps to exactly
one reason. The caller only ever sees the reason; the detail is logged.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from jose import jwt
from jose.exceptions import JWTError

from shared.config import ServerConfig
from shared.logging import get_logger
from shared.models import AccessToken, AuthorizationDecision, Reason
from secure_mcp.jwks import KeyFetchError, SigningKeyCache

logger = get_logger(__name__)

BEARER_SCHEME = "bearer"


class AuthenticationError(Exception):
    """
    Raised when a bearer token is rejected.

    Attributes:
        reason: The rejection reason exposed to the transport
        detail: Server-side explanation, never returned to the caller
    """
    reason = Reason.INVALID_TOKEN

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class MissingTokenError(AuthenticationError):
    reason = Reason.MISSING_TOKEN


class InvalidTokenError(AuthenticationError):
    reason = Reason.INVALID_TOKEN


class ExpiredTokenError(AuthenticationError):
    reason = Reason.EXPIRED_TOKEN


def extract_bearer(authorization_header: Optional[str]) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        MissingTokenError: If no bearer token is present
    """
    if not authorization_header or not authorization_header.strip():
        raise MissingTokenError("Missing Authorization header")

    scheme, _, token = authorization_header.strip().partition(" ")
    if scheme.lower() != BEARER_SCHEME:
        raise MissingTokenError(f"Unsupported authorization scheme '{scheme}'")

    token = token.strip()
    if not token:
        raise MissingTokenError("Empty bearer token")
    return token


class TokenValidator:
    """
    Validates bearer tokens issued by the configured authority.

    Keys come from the signing key cache; the entire validation, key fetch
    included, is bounded by a timeout and fails closed.
    """

    def __init__(self, config: ServerConfig, key_cache: SigningKeyCache) -> None:
        self.config = config
        self.key_cache = key_cache

    async def validate(self, authorization_header: Optional[str]) -> AccessToken:
        """
        Validate the Authorization header of a request.

        Args:
            authorization_header: Raw header value, may be None

        Returns:
            The validated AccessToken

        Raises:
            MissingTokenError: No bearer token was presented
            InvalidTokenError: Malformed, forged, wrong issuer or audience,
                or validation could not complete in time
            ExpiredTokenError: Well-formed token past its expiry
        """
        token = extract_bearer(authorization_header)
        try:
            return await asyncio.wait_for(
                self._validate(token),
                timeout=self.config.validation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise InvalidTokenError("Token validation timed out")

    async def _validate(self, token: str) -> AccessToken:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise InvalidTokenError(f"Malformed token: {e}")

        algorithm = header.get("alg")
        if algorithm not in self.config.algorithms:
            raise InvalidTokenError(f"Token algorithm '{algorithm}' is not accepted")

        try:
            key = await self.key_cache.get_key(header.get("kid"))
        except KeyFetchError as e:
            raise InvalidTokenError(f"Signing keys unavailable: {e}")
        if key is None:
            raise InvalidTokenError(f"No signing key for kid '{header.get('kid')}'")

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=list(self.config.algorithms),
                options={
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_exp": False,
                    "verify_at_hash": False,
                    "leeway": self.config.leeway_seconds,
                },
            )
        except JWTError as e:
            raise InvalidTokenError(f"Token signature verification failed: {e}")

        issuer = claims.get("iss")
        if issuer != self.config.issuer:
            raise InvalidTokenError(f"Token issuer '{issuer}' is not trusted")

        audiences = _as_list(claims.get("aud"))
        if not set(audiences) & set(self.config.audiences):
            raise InvalidTokenError(f"Token audience {audiences} does not match this resource")

        expires_at = self._check_expiry(claims.get("exp"))

        return AccessToken(
            raw=token,
            subject=str(claims.get("sub") or claims.get("oid") or ""),
            issuer=issuer,
            audience=audiences,
            expires_at=expires_at,
            claims=claims,
        )

    def _check_expiry(self, exp: Any) -> datetime:
        if exp is None:
            raise InvalidTokenError("Token has no expiry")
        try:
            exp = int(exp)
        except (TypeError, ValueError, OverflowError):
            raise InvalidTokenError("Token expiry is not a timestamp")

        now = int(datetime.now(timezone.utc).timestamp())
        if exp + self.config.leeway_seconds <= now:
            raise ExpiredTokenError("Token has expired")
        try:
            return datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            raise InvalidTokenError(f"Token expiry {exp} is out of range")


class ScopeAuthorizer:
    """Checks a validated token for the required delegated scope."""

    def __init__(self, scope_claim: str, required_scope: str) -> None:
        self.scope_claim = scope_claim
        self.required_scope = required_scope

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ScopeAuthorizer":
        return cls(config.scope_claim, config.required_scope)

    def granted_scopes(self, token: AccessToken) -> Optional[set[str]]:
        """Scopes carried by the token, or None if the claim is absent."""
        value = token.claims.get(self.scope_claim)
        if value is None:
            return None
        if isinstance(value, str):
            return set(value.split())
        if isinstance(value, (list, tuple, set)):
            return {str(item) for item in value}
        return set()

    def authorize(self, token: AccessToken) -> AuthorizationDecision:
        """
        Decide whether the token carries the required scope.

        Args:
            token: A token returned by TokenValidator.validate

        Returns:
            Allowed, or MissingScope
        """
        scopes = self.granted_scopes(token)

        if scopes is None:
            logger.warning(
                "Access denied (scope claim absent)",
                subject=token.subject,
                scope_claim=self.scope_claim,
            )
            return AuthorizationDecision.deny(Reason.MISSING_SCOPE)

        if self.required_scope not in scopes:
            logger.warning(
                "Access denied (scope mismatch)",
                subject=token.subject,
                required_scope=self.required_scope,
                granted_scopes=sorted(scopes),
            )
            return AuthorizationDecision.deny(Reason.MISSING_SCOPE)

        logger.debug("Access granted", subject=token.subject)
        return AuthorizationDecision.allow()


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise InvalidTokenError(f"Token audience has unexpected type {type(value).__name__}")

