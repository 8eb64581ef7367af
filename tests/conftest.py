"""Shared fixtures: a fake identity authority and tokens it signs."""

import asyncio
import time
from typing import Any, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

TENANT_ID = "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0"
CLIENT_ID = "5d6e7f80-1a2b-3c4d-5e6f-708192a3b4c5"
INSTANCE = "https://login.example.test"
ISSUER = f"{INSTANCE}/{TENANT_ID}/v2.0"
JWKS_URI = f"{INSTANCE}/{TENANT_ID}/discovery/v2.0/keys"
BASE_URL = "https://example.test"
RESOURCE = f"{BASE_URL}/mcp"
KID = "signing-key-1"


def _private_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_jwk(private_pem: str, kid: str) -> dict[str, Any]:
    """Public JWK for a private key, as the authority publishes it."""
    public = jwk.construct(private_pem, "RS256").public_key().to_dict()
    return {**public, "kid": kid, "use": "sig"}


class FakeAuthority:
    """
    JWKS endpoint served through an httpx mock transport.

    Tests flip ``down`` or ``status_code`` to simulate outages and set
    ``gate`` to hold fetches in flight.
    """

    def __init__(self, keys: list[dict[str, Any]]) -> None:
        self.keys = keys
        self.requests = 0
        self.down = False
        self.status_code = 200
        self.document: Optional[Any] = None
        self.gate: Optional[asyncio.Event] = None
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.down:
            raise httpx.ConnectError("authority unreachable", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        document = self.document if self.document is not None else {"keys": self.keys}
        return httpx.Response(200, json=document)


@pytest.fixture(scope="session")
def private_pem() -> str:
    return _private_pem()


@pytest.fixture(scope="session")
def other_private_pem() -> str:
    """A key the authority never published."""
    return _private_pem()


@pytest.fixture
async def authority(private_pem):
    fake = FakeAuthority([public_jwk(private_pem, KID)])
    yield fake
    await fake.client.aclose()


@pytest.fixture
def settings():
    from shared.config import AzureADSettings, ServerSettings, Settings

    return Settings(
        server=ServerSettings(
            http_mcp_server_url=BASE_URL,
            website_hostname=None,
            enable_audit=False,
        ),
        azure_ad=AzureADSettings(
            instance=INSTANCE,
            tenant_id=TENANT_ID,
            client_id=CLIENT_ID,
        ),
    )


@pytest.fixture
def config(settings):
    from shared.config import ServerConfig

    return ServerConfig.from_settings(settings)


@pytest.fixture
def key_cache(config, authority):
    from secure_mcp.jwks import SigningKeyCache

    return SigningKeyCache(
        config.jwks_uri,
        cache_ttl_seconds=config.jwks_cache_ttl_seconds,
        min_refresh_interval_seconds=config.jwks_min_refresh_interval_seconds,
        http_client=authority.client,
    )


@pytest.fixture
def validator(config, key_cache):
    from secure_mcp.auth import TokenValidator

    return TokenValidator(config, key_cache)


@pytest.fixture
def make_token(private_pem):
    """
    Factory for signed access tokens.

    Claims default to a valid token for this resource with the mcp:tools
    scope; pass a claim as None to leave it out.
    """

    def _make(
        scp: Optional[str] = "mcp:tools",
        aud: Optional[str] = RESOURCE,
        iss: Optional[str] = ISSUER,
        expires_in: Optional[int] = 3600,
        kid: Optional[str] = KID,
        key: Optional[str] = None,
        algorithm: str = "RS256",
        **extra: Any,
    ) -> str:
        now = int(time.time())
        claims = {
            "iss": iss,
            "aud": aud,
            "sub": "user-subject-1",
            "oid": "00000000-0000-0000-0000-00000000abcd",
            "iat": now - 60,
            "nbf": now - 60,
            "exp": now + expires_in if expires_in is not None else None,
            "scp": scp,
            **extra,
        }
        claims = {name: value for name, value in claims.items() if value is not None}
        headers = {"kid": kid} if kid else None
        return jwt.encode(claims, key or private_pem, algorithm=algorithm, headers=headers)

    return _make


@pytest.fixture
def bearer(make_token):
    """Authorization header factory."""

    def _bearer(**claims: Any) -> str:
        return f"Bearer {make_token(**claims)}"

    return _bearer
